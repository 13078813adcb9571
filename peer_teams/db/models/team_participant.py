# db/models/team_participant.py
import uuid
from typing import Optional
from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base

class TeamParticipant(Base):
    __tablename__ = "team_participant"
    __table_args__ = (
        UniqueConstraint("team_id", "participant_id", name="team_participant_uq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    duty: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    team_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("team.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("participant.id", ondelete="CASCADE"), nullable=False, index=True
    )

    team = relationship("Team", back_populates="team_participants")
    participant = relationship("Participant", back_populates="memberships")
