# db/models/response_map.py
import uuid
from typing import Optional
from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from peer_teams.db.models._base import Base

class ResponseMap(Base):
    __tablename__ = "response_map"
    __table_args__ = (
        CheckConstraint(
            "(reviewer_participant_id IS NULL) <> (reviewer_team_id IS NULL)",
            name="response_map_reviewer_xor",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_reviewing_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    assignment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assignment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer_participant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("participant.id", ondelete="CASCADE"), nullable=True, index=True
    )
    reviewer_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("team.id", ondelete="CASCADE"), nullable=True, index=True
    )
    reviewee_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("team.id", ondelete="CASCADE"), nullable=True, index=True
    )
    reviewee_participant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("participant.id", ondelete="CASCADE"), nullable=True, index=True
    )
