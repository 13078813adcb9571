# services/user.py
from uuid import UUID
from typing import Self, ClassVar, Optional
from peer_teams.db.schemas.user import UserRead, UserCreate, UserUpdate
from peer_teams.db.enums import UserRole
from peer_teams.db.database import DataBase
from peer_teams.services.audit_log import instrument_service_class

class UserService:
    _instance: ClassVar[Optional["UserService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self._initialized = True

    async def create_user(self, user: UserCreate) -> UserRead:
        return await self.database.create_user(user)

    async def update_user(self, user: UserUpdate) -> UserRead:
        return await self.database.update_user(user)

    async def change_role(self, user: UserRead, role: UserRole) -> UserRead:
        return await self.update_user(UserUpdate(id=user.id, role=role))

    async def change_handle(self, user: UserRead, handle: Optional[str]) -> UserRead:
        return await self.update_user(UserUpdate(id=user.id, handle=handle))

    async def get_user(self, uid: Optional[UUID] = None, name: Optional[str] = None) -> Optional[UserRead]:
        if uid is not None:
            return await self.database.get_user_by_id(uid)
        return await self.database.get_user_by_name(name)


instrument_service_class(
    UserService,
    prefix="services.user",
    actor_fields=("user", "actor"),
    exclude={"get_user"},
)
