# db/models/team.py
import uuid
from typing import List, Optional
from sqlalchemy import JSON, Boolean, CheckConstraint, Enum as SAEnum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base
from peer_teams.db.enums import ContextKind

class Team(Base):
    __tablename__ = "team"
    __table_args__ = (
        CheckConstraint(
            "(assignment_id IS NULL) <> (course_id IS NULL)",
            name="team_context_xor",
        ),
        UniqueConstraint("assignment_id", "name", name="team_assignment_name_uq"),
        UniqueConstraint("course_id", "name", name="team_course_name_uq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    context_kind: Mapped[ContextKind] = mapped_column(SAEnum(ContextKind, name="context_kind"), nullable=False)
    mentored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    directory_num: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    submitted_hyperlinks: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("assignment.id", ondelete="CASCADE"), nullable=True, index=True
    )
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("course.id", ondelete="CASCADE"), nullable=True, index=True
    )

    team_participants: Mapped[List["TeamParticipant"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )
