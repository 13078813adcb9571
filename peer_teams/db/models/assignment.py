# db/models/assignment.py
import uuid
from typing import List, Optional
from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base

class Assignment(Base):
    __tablename__ = "assignment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    directory_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    max_team_size: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    auto_assign_mentor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    team_reviewing_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    course_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("course.id", ondelete="SET NULL"), nullable=True, index=True
    )

    course: Mapped[Optional["Course"]] = relationship(back_populates="assignments")
    topics: Mapped[List["SignUpTopic"]] = relationship(
        back_populates="assignment", cascade="all, delete-orphan", passive_deletes=True
    )
