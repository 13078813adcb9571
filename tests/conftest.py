"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database and freshly built service
singletons, plus a small factory for users, contexts, enrollments and teams.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from typing import AsyncGenerator, List, Optional, Tuple
from uuid import UUID

import pytest

from peer_teams.config import Settings
from peer_teams.db.database import DataBase
from peer_teams.db.schemas.context import AssignmentCreate, AssignmentRead, CourseCreate, CourseRead
from peer_teams.db.schemas.participant import ParticipantRead
from peer_teams.db.schemas.team import TeamRead
from peer_teams.db.schemas.user import UserCreate, UserRead
from peer_teams.services.mentor import MentorService
from peer_teams.services.notifications import NotificationService
from peer_teams.services.participant import ParticipantService
from peer_teams.services.team import TeamService
from peer_teams.services.team_copy import TeamCopyService
from peer_teams.services.team_import_export import TeamImportExportService
from peer_teams.services.user import UserService

SINGLETONS = (
    Settings,
    DataBase,
    UserService,
    ParticipantService,
    TeamService,
    MentorService,
    TeamCopyService,
    TeamImportExportService,
    NotificationService,
)


def _reset_singletons() -> None:
    for cls in SINGLETONS:
        cls._instance = None


class FakeBot:
    """Records messages instead of talking to Telegram."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Tuple[int, str]] = []
        self.fail = fail

    async def send_message(self, chat_id: int, text: str) -> None:
        if self.fail:
            raise RuntimeError("delivery backend is down")
        self.sent.append((chat_id, text))


class Factory:
    def __init__(self, database: DataBase) -> None:
        self.db = database
        self._counter = 0

    async def user(self, name: Optional[str] = None, **fields) -> UserRead:
        self._counter += 1
        return await self.db.create_user(UserCreate(name=name or f"student{self._counter}", **fields))

    async def course(self, name: str = "CSC 517", **fields) -> CourseRead:
        return await self.db.create_course(CourseCreate(name=name, **fields))

    async def assignment(self, name: str = "Program 1", **fields) -> AssignmentRead:
        return await self.db.create_assignment(AssignmentCreate(name=name, **fields))

    async def enroll(
        self,
        user: UserRead,
        *,
        assignment_id: Optional[UUID] = None,
        course_id: Optional[UUID] = None,
        **capabilities: bool,
    ) -> ParticipantRead:
        return await ParticipantService().bind_context(
            user, assignment_id=assignment_id, course_id=course_id, **capabilities
        )

    async def enrolled_users(self, count: int, *, assignment_id: Optional[UUID] = None, course_id: Optional[UUID] = None) -> List[UserRead]:
        users = []
        for _ in range(count):
            user = await self.user()
            await self.enroll(user, assignment_id=assignment_id, course_id=course_id)
            users.append(user)
        return users

    async def team(self, *, assignment_id: Optional[UUID] = None, course_id: Optional[UUID] = None, **kwargs) -> TeamRead:
        return await TeamService().create_team_and_node(assignment_id=assignment_id, course_id=course_id, **kwargs)


@pytest.fixture
async def db() -> AsyncGenerator[DataBase, None]:
    _reset_singletons()
    database = DataBase()
    await database.create_all()
    yield database
    await NotificationService().drain()
    await database.drop_all()
    await database.dispose()
    _reset_singletons()


@pytest.fixture
def make(db: DataBase) -> Factory:
    return Factory(db)


@pytest.fixture
def bot(db: DataBase) -> FakeBot:
    fake = FakeBot()
    NotificationService().bind_bot(fake)
    return fake
