# db/models/sign_up_topic.py
import uuid
from typing import List
from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base

class SignUpTopic(Base):
    __tablename__ = "sign_up_topic"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assignment.id", ondelete="CASCADE"), nullable=False, index=True
    )

    assignment: Mapped["Assignment"] = relationship(back_populates="topics")
    signed_up_teams: Mapped[List["SignedUpTeam"]] = relationship(
        back_populates="topic", cascade="all, delete-orphan", passive_deletes=True
    )


class SignedUpTeam(Base):
    __tablename__ = "signed_up_team"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    is_waitlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    topic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sign_up_topic.id", ondelete="CASCADE"), nullable=False, index=True
    )
    team_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("team.id", ondelete="CASCADE"), nullable=False, index=True)

    topic: Mapped["SignUpTopic"] = relationship(back_populates="signed_up_teams")
