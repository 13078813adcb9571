# db/schemas/user.py
import uuid
from typing import Optional
from pydantic import EmailStr
from peer_teams.db.schemas._base import OrmModel
from peer_teams.db.enums import UserRole
from peer_teams.utils.sentinels import Missing

class UserBase(OrmModel):
    name: str
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    handle: Optional[str] = None
    role: UserRole = UserRole.STUDENT
    master_permission_granted: bool = False
    tg_id: Optional[int] = None

class UserCreate(UserBase): ...

class UserUpdate(OrmModel):
    id: uuid.UUID
    full_name: str | Missing | None = Missing()
    email: EmailStr | Missing | None = Missing()
    handle: str | Missing | None = Missing()
    role: UserRole | Missing = Missing()
    master_permission_granted: bool | Missing = Missing()
    tg_id: int | Missing | None = Missing()

class UserRead(UserBase):
    id: uuid.UUID

    @property
    def display_full_name(self) -> str:
        return self.full_name or self.name
