# db/models/course.py
import uuid
from typing import List, Optional
from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base

class Course(Base):
    __tablename__ = "course"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    directory_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    assignments: Mapped[List["Assignment"]] = relationship(back_populates="course", passive_deletes=True)
