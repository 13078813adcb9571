# db/models/user.py
import uuid
from typing import List, Optional
from sqlalchemy import Enum as SAEnum, String, BigInteger, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from peer_teams.db.models._base import Base
from peer_teams.db.enums import UserRole

class User(Base):
    __tablename__ = "user"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    handle: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False, default=UserRole.STUDENT)
    master_permission_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tg_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    participants: Mapped[List["Participant"]] = relationship(back_populates="user", passive_deletes=True)
    audit_logs: Mapped[List["AuditLog"]] = relationship(back_populates="actor", passive_deletes=True)
