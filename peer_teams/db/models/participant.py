# db/models/participant.py
import uuid
from typing import List, Optional
from sqlalchemy import Boolean, CheckConstraint, Enum as SAEnum, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base
from peer_teams.db.enums import ContextKind

class Participant(Base):
    __tablename__ = "participant"
    __table_args__ = (
        CheckConstraint(
            "(assignment_id IS NULL) <> (course_id IS NULL)",
            name="participant_context_xor",
        ),
        UniqueConstraint("user_id", "assignment_id", name="participant_user_assignment_uq"),
        UniqueConstraint("user_id", "course_id", name="participant_user_course_uq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    context_kind: Mapped[ContextKind] = mapped_column(SAEnum(ContextKind, name="context_kind"), nullable=False)
    handle: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    can_submit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_take_quiz: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_mentor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    permission_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("assignment.id", ondelete="CASCADE"), nullable=True, index=True
    )
    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("course.id", ondelete="CASCADE"), nullable=True, index=True
    )

    user: Mapped["User"] = relationship(back_populates="participants")
    memberships: Mapped[List["TeamParticipant"]] = relationship(back_populates="participant", passive_deletes=True)
