# db/database.py
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, ClassVar, Self, Any, List, Tuple, Dict

from sqlalchemy import select, func, delete, or_, and_
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from peer_teams.config import Settings
from peer_teams.db.enums import ContextKind, NodeType
from peer_teams.db.models._base import Base
from peer_teams.db.models.user import User
from peer_teams.db.models.course import Course
from peer_teams.db.models.assignment import Assignment
from peer_teams.db.models.participant import Participant
from peer_teams.db.models.team import Team
from peer_teams.db.models.team_participant import TeamParticipant
from peer_teams.db.models.tree_node import TreeNode
from peer_teams.db.models.response_map import ResponseMap
from peer_teams.db.models.sign_up_topic import SignUpTopic, SignedUpTeam
from peer_teams.db.models.audit_log import AuditLog
from peer_teams.db.schemas.user import UserCreate, UserRead, UserUpdate
from peer_teams.db.schemas.context import (
    AssignmentCreate, AssignmentRead, CourseCreate, CourseRead, ContextRef, TopicCreate, TopicRead,
)
from peer_teams.db.schemas.participant import ParticipantCreate, ParticipantRead, ParticipantUpdate
from peer_teams.db.schemas.team import TeamCreate, TeamRead, TeamUpdate
from peer_teams.db.schemas.team_participant import TeamParticipantRead, MembershipDetail
from peer_teams.db.schemas.tree_node import TreeNodeRead
from peer_teams.db.schemas.response_map import ResponseMapCreate, ResponseMapRead
from peer_teams.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from peer_teams.errors import (
    AlreadyMemberError, CapacityExceededError, DependentAssociationError, DuplicateContextError,
    NotFoundError, ValidationError,
)
from peer_teams.utils.sentinels import provided


class DataBase():
    """
    Async SQLAlchemy database singleton.
    Usage:
        db = DataBase()  # same instance everywhere
        async with db.session() as s:
            ...
    """
    _instance: ClassVar[Optional["DataBase"]] = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __init__(self, echo: bool = False, url: Optional[str] = None) -> None:
        if getattr(self, "_initialized", False):
            return

        url = url or Settings().database_url
        engine_kwargs: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            # in-memory databases must share a single connection between sessions
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self._engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        self._initialized = True

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # --- schema management helpers (optional) ---

    async def create_all(self) -> None:
        """
        Create tables based on Base metadata. Use only in dev/tests; prefer Alembic in prod.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # --- context filters ---

    @staticmethod
    def _participant_in(context: ContextRef):
        if context.kind == ContextKind.ASSIGNMENT:
            return Participant.assignment_id == context.id
        return Participant.course_id == context.id

    @staticmethod
    def _team_in(context: ContextRef):
        if context.kind == ContextKind.ASSIGNMENT:
            return Team.assignment_id == context.id
        return Team.course_id == context.id

    # --- users ---

    async def create_user(self, data: UserCreate) -> UserRead:
        """
        Create a user from UserCreate schema and return UserRead object.

        Raises:
            ValidationError: if the user name is already taken.
        """
        user = User(
            name=data.name,
            full_name=data.full_name,
            email=str(data.email) if data.email is not None else None,
            handle=data.handle,
            role=data.role,
            master_permission_granted=data.master_permission_granted,
            tg_id=data.tg_id,
        )

        async with self.session() as s:
            s.add(user)
            try:
                await s.flush()
            except IntegrityError as exc:
                raise ValidationError(f"User name '{data.name}' is already taken.") from exc

        return UserRead.model_validate(user)

    async def get_user_by_id(self, uid: Optional[uuid.UUID] = None) -> Optional[UserRead]:
        """
        Fetch a user by internal UUID primary key.

        Args:
            uid: User UUID. If None, returns None immediately.

        Returns:
            Optional[UserRead]: Pydantic DTO of the user if found; otherwise None.
        """
        if uid is None:
            return None

        async with self.session() as s:
            user_row = await s.get(User, uid)

        return UserRead.model_validate(user_row) if user_row is not None else None

    async def get_user_by_name(self, name: Optional[str] = None) -> Optional[UserRead]:
        """
        Fetch a user by login name (exact match after stripping whitespace).
        """
        if not name or not name.strip():
            return None

        async with self.session() as s:
            stmt = select(User).where(User.name == name.strip())
            user_row = (await s.execute(stmt)).scalar_one_or_none()

        return UserRead.model_validate(user_row) if user_row is not None else None

    async def get_users_by_names(self, names: List[str]) -> Dict[str, UserRead]:
        """Return {name: user} for every name that exists."""
        wanted = [n.strip() for n in names if n and n.strip()]
        if not wanted:
            return {}

        async with self.session() as s:
            rows = (await s.execute(select(User).where(User.name.in_(wanted)))).scalars().all()

        return {row.name: UserRead.model_validate(row) for row in rows}

    async def update_user(self, data: UserUpdate) -> UserRead:
        """
        Partially update a user by id.
        Only fields explicitly provided (i.e., not MISSING) are updated.

        Raises:
            NotFoundError: if the user with given id does not exist.
        """
        async with self.session() as s:
            db_user = await s.get(User, data.id)
            if db_user is None:
                raise NotFoundError("User not found.")

            if provided(data.full_name):
                db_user.full_name = data.full_name
            if provided(data.email):
                db_user.email = str(data.email) if data.email is not None else None
            if provided(data.handle):
                db_user.handle = data.handle
            if provided(data.role):
                db_user.role = data.role
            if provided(data.master_permission_granted):
                db_user.master_permission_granted = data.master_permission_granted
            if provided(data.tg_id):
                db_user.tg_id = data.tg_id

            await s.flush()

        return UserRead.model_validate(db_user)

    # --- contexts ---

    async def create_course(self, payload: CourseCreate) -> CourseRead:
        obj = Course(name=payload.name, directory_path=payload.directory_path)
        async with self.session() as s:
            s.add(obj)
            await s.flush()
        return CourseRead.model_validate(obj)

    async def get_course(self, course_id: Optional[uuid.UUID]) -> Optional[CourseRead]:
        if not course_id:
            return None
        async with self.session() as s:
            row = await s.get(Course, course_id)
        return CourseRead.model_validate(row) if row is not None else None

    async def create_assignment(self, payload: AssignmentCreate) -> AssignmentRead:
        obj = Assignment(
            name=payload.name,
            directory_path=payload.directory_path,
            max_team_size=payload.max_team_size,
            auto_assign_mentor=payload.auto_assign_mentor,
            team_reviewing_enabled=payload.team_reviewing_enabled,
            course_id=payload.course_id,
        )
        async with self.session() as s:
            s.add(obj)
            await s.flush()
        return AssignmentRead.model_validate(obj)

    async def get_assignment(self, assignment_id: Optional[uuid.UUID]) -> Optional[AssignmentRead]:
        if not assignment_id:
            return None
        async with self.session() as s:
            row = await s.get(Assignment, assignment_id)
        return AssignmentRead.model_validate(row) if row is not None else None

    async def create_topic(self, payload: TopicCreate) -> TopicRead:
        obj = SignUpTopic(name=payload.name, assignment_id=payload.assignment_id)
        async with self.session() as s:
            s.add(obj)
            await s.flush()
        return TopicRead.model_validate(obj)

    async def assignment_has_topics(self, assignment_id: uuid.UUID) -> bool:
        async with self.session() as s:
            stmt = select(func.count(SignUpTopic.id)).where(SignUpTopic.assignment_id == assignment_id)
            return int((await s.execute(stmt)).scalar_one()) > 0

    async def sign_up_team(self, topic_id: uuid.UUID, team_id: uuid.UUID, is_waitlisted: bool = False) -> None:
        async with self.session() as s:
            s.add(SignedUpTeam(topic_id=topic_id, team_id=team_id, is_waitlisted=is_waitlisted))
            await s.flush()

    async def get_team_topic_id(self, team_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Topic of the team's first non-waitlisted signup, if any."""
        async with self.session() as s:
            stmt = (
                select(SignedUpTeam.topic_id)
                .where(SignedUpTeam.team_id == team_id, SignedUpTeam.is_waitlisted.is_(False))
                .limit(1)
            )
            return (await s.execute(stmt)).scalar_one_or_none()

    # --- participants ---

    async def _find_participant(self, s: AsyncSession, user_id: uuid.UUID, context: ContextRef) -> Optional[Participant]:
        stmt = select(Participant).where(Participant.user_id == user_id, self._participant_in(context))
        return (await s.execute(stmt)).scalar_one_or_none()

    async def _handle_taken(
        self,
        s: AsyncSession,
        context: ContextRef,
        handle: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        stmt = select(Participant.id).where(self._participant_in(context), Participant.handle == handle)
        if exclude_id is not None:
            stmt = stmt.where(Participant.id != exclude_id)
        return (await s.execute(stmt.limit(1))).scalar_one_or_none() is not None

    async def _ensure_participant(
        self,
        s: AsyncSession,
        user: User,
        context: ContextRef,
        *,
        handle: Optional[str] = None,
        permission_granted: bool = False,
    ) -> Tuple[Participant, bool]:
        """
        Return the user's participant in the context, creating it when missing.

        Notes:
            - Runs inside the caller's session to keep the surrounding write atomic.
            - A new participant takes `handle` when given and free, else the user's name.
        """
        existing = await self._find_participant(s, user.id, context)
        if existing is not None:
            return existing, False

        chosen = handle
        if not chosen or await self._handle_taken(s, context, chosen):
            chosen = user.name

        participant = Participant(
            user_id=user.id,
            context_kind=context.kind,
            assignment_id=context.assignment_id,
            course_id=context.course_id,
            handle=chosen,
            permission_granted=permission_granted,
        )
        s.add(participant)
        await s.flush()
        return participant, True

    async def create_participant(self, payload: ParticipantCreate) -> ParticipantRead:
        """
        Insert a participant bound to exactly one context.

        Raises:
            DuplicateContextError: if the user already has a participant in that context.
        """
        obj = Participant(
            user_id=payload.user_id,
            context_kind=payload.context_kind,
            assignment_id=payload.assignment_id,
            course_id=payload.course_id,
            handle=payload.handle,
            can_submit=payload.can_submit,
            can_review=payload.can_review,
            can_take_quiz=payload.can_take_quiz,
            can_mentor=payload.can_mentor,
            permission_granted=payload.permission_granted,
        )
        async with self.session() as s:
            s.add(obj)
            try:
                await s.flush()
            except IntegrityError as exc:
                raise DuplicateContextError(
                    f"User {payload.user_id} is already a participant of {payload.context_kind} "
                    f"{payload.assignment_id or payload.course_id}."
                ) from exc

        return ParticipantRead.model_validate(obj)

    async def find_or_create_participant(
        self,
        user_id: uuid.UUID,
        context: ContextRef,
        *,
        handle: Optional[str] = None,
        permission_granted: bool = False,
    ) -> Tuple[ParticipantRead, bool]:
        """
        Return (participant, created) for the user in the given context.

        Raises:
            NotFoundError: if the user does not exist.
        """
        async with self.session() as s:
            user = await s.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found.")
            participant, created = await self._ensure_participant(
                s, user, context, handle=handle, permission_granted=permission_granted
            )
            return ParticipantRead.model_validate(participant), created

    async def get_participant(self, participant_id: uuid.UUID) -> Optional[ParticipantRead]:
        if not participant_id:
            return None
        async with self.session() as s:
            row = await s.get(Participant, participant_id)
        return ParticipantRead.model_validate(row) if row is not None else None

    async def find_participant(self, user_id: uuid.UUID, context: ContextRef) -> Optional[ParticipantRead]:
        """Fetch the participant binding of a user in a context."""
        async with self.session() as s:
            row = await self._find_participant(s, user_id, context)
        return ParticipantRead.model_validate(row) if row is not None else None

    async def list_participants(self, context: ContextRef, *, can_mentor: Optional[bool] = None) -> List[ParticipantRead]:
        """List participants of a context ordered by id, optionally filtered by the mentor flag."""
        async with self.session() as s:
            stmt = select(Participant).where(self._participant_in(context))
            if can_mentor is not None:
                stmt = stmt.where(Participant.can_mentor.is_(can_mentor))
            rows = (await s.execute(stmt.order_by(Participant.id.asc()))).scalars().all()
        return [ParticipantRead.model_validate(r) for r in rows]

    async def list_participant_details(self, context: ContextRef) -> List[Tuple[ParticipantRead, UserRead]]:
        async with self.session() as s:
            stmt = (
                select(Participant, User)
                .join(User, User.id == Participant.user_id)
                .where(self._participant_in(context))
                .order_by(User.name.asc())
            )
            rows = (await s.execute(stmt)).all()
        return [(ParticipantRead.model_validate(p), UserRead.model_validate(u)) for p, u in rows]

    async def list_unassigned_participants(self, context: ContextRef, *, exclude_mentors: bool = True) -> List[ParticipantRead]:
        """Participants of the context that are not on any team of the same context."""
        in_team = (
            select(TeamParticipant.participant_id)
            .join(Team, Team.id == TeamParticipant.team_id)
            .where(self._team_in(context))
        )
        async with self.session() as s:
            stmt = select(Participant).where(self._participant_in(context), Participant.id.not_in(in_team))
            if exclude_mentors:
                stmt = stmt.where(Participant.can_mentor.is_(False))
            rows = (await s.execute(stmt.order_by(Participant.id.asc()))).scalars().all()
        return [ParticipantRead.model_validate(r) for r in rows]

    async def participant_handle_taken(
        self,
        context: ContextRef,
        handle: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        async with self.session() as s:
            return await self._handle_taken(s, context, handle, exclude_id)

    async def update_participant(self, payload: ParticipantUpdate) -> ParticipantRead:
        """
        Partially update a participant by id.

        Raises:
            NotFoundError: If the participant does not exist.
        """
        async with self.session() as s:
            db_obj = await s.get(Participant, payload.id)
            if db_obj is None:
                raise NotFoundError("Participant not found.")

            if provided(payload.handle):
                db_obj.handle = payload.handle
            if provided(payload.can_submit):
                db_obj.can_submit = payload.can_submit
            if provided(payload.can_review):
                db_obj.can_review = payload.can_review
            if provided(payload.can_take_quiz):
                db_obj.can_take_quiz = payload.can_take_quiz
            if provided(payload.can_mentor):
                db_obj.can_mentor = payload.can_mentor
            if provided(payload.permission_granted):
                db_obj.permission_granted = payload.permission_granted

            await s.flush()

        return ParticipantRead.model_validate(db_obj)

    async def delete_participant(self, participant_id: uuid.UUID, force: bool = False) -> None:
        """
        Delete a participant.

        Behavior:
            - Unforced: refuses when review maps reference the participant or it sits on a team.
            - Forced: destroys those review maps, removes the participant's memberships
              (a team whose only member is this participant is deleted entirely),
              then the participant.

        Raises:
            NotFoundError: If the participant does not exist.
            DependentAssociationError: If dependents exist and force is False.
        """
        async with self.session() as s:
            participant = await s.get(Participant, participant_id)
            if participant is None:
                raise NotFoundError("Participant not found.")

            maps_clause = or_(
                ResponseMap.reviewer_participant_id == participant_id,
                ResponseMap.reviewee_participant_id == participant_id,
            )
            map_count = int((await s.execute(select(func.count(ResponseMap.id)).where(maps_clause))).scalar_one())
            memberships: List[TeamParticipant] = list(
                (await s.execute(select(TeamParticipant).where(TeamParticipant.participant_id == participant_id)))
                .scalars()
                .all()
            )

            if not force and (map_count or memberships):
                raise DependentAssociationError("Associations exist for this participant.")

            await s.execute(delete(ResponseMap).where(maps_clause))
            for membership in memberships:
                team_size = int(
                    (
                        await s.execute(
                            select(func.count(TeamParticipant.id)).where(TeamParticipant.team_id == membership.team_id)
                        )
                    ).scalar_one()
                )
                if team_size == 1:
                    await self._delete_team(s, membership.team_id)
                else:
                    await self._delete_membership_rows(s, [membership.id])

            await s.execute(delete(Participant).where(Participant.id == participant_id))

    # --- teams ---

    async def _ensure_team_node(self, s: AsyncSession, team: Team) -> TreeNode:
        stmt = select(TreeNode).where(TreeNode.node_type == NodeType.TEAM, TreeNode.node_object_id == team.id)
        node = (await s.execute(stmt)).scalar_one_or_none()
        if node is None:
            node = TreeNode(
                node_type=NodeType.TEAM,
                parent_id=team.assignment_id or team.course_id,
                node_object_id=team.id,
            )
            s.add(node)
            await s.flush()
        return node

    async def create_team(self, payload: TeamCreate, *, with_node: bool = True) -> TeamRead:
        """
        Create a team and, unless disabled, its companion tree node.

        Raises:
            ValidationError: if the name is already in use within the context.
        """
        team = Team(
            name=payload.name,
            context_kind=payload.context_kind,
            assignment_id=payload.assignment_id,
            course_id=payload.course_id,
            mentored=payload.mentored,
            directory_num=payload.directory_num,
            submitted_hyperlinks=list(payload.submitted_hyperlinks),
        )

        async with self.session() as s:
            s.add(team)
            try:
                await s.flush()
            except IntegrityError as exc:
                raise ValidationError(f"Team name '{payload.name}' is already in use.") from exc
            if with_node:
                await self._ensure_team_node(s, team)

        return TeamRead.model_validate(team)

    async def get_team(self, team_id: Optional[uuid.UUID]) -> Optional[TeamRead]:
        """
        Fetch a team by its UUID.

        Returns:
            Optional[TeamRead]: DTO if found; otherwise None.
        """
        if not team_id:
            return None

        async with self.session() as s:
            row = await s.get(Team, team_id)

        return TeamRead.model_validate(row) if row else None

    async def find_team_by_name(self, context: ContextRef, name: str) -> Optional[TeamRead]:
        async with self.session() as s:
            stmt = select(Team).where(self._team_in(context), Team.name == name)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamRead.model_validate(row) if row else None

    async def list_teams(self, context: ContextRef) -> List[TeamRead]:
        """Teams of a context ordered by name."""
        async with self.session() as s:
            stmt = select(Team).where(self._team_in(context)).order_by(Team.name.asc(), Team.id.asc())
            rows = (await s.execute(stmt)).scalars().all()
        return [TeamRead.model_validate(r) for r in rows]

    async def list_team_names_like(self, prefix: str, context: Optional[ContextRef] = None) -> List[str]:
        """Names starting with `<prefix>_`; the caller filters the numeric suffix."""
        async with self.session() as s:
            stmt = select(Team.name).where(Team.name.startswith(f"{prefix}_", autoescape=True))
            if context is not None:
                stmt = stmt.where(self._team_in(context))
            return list((await s.execute(stmt)).scalars().all())

    async def update_team(self, payload: TeamUpdate) -> TeamRead:
        """
        Partially update a team by id.

        Raises:
            NotFoundError: If the team does not exist.
            ValidationError: On a name collision within the context.
        """
        async with self.session() as s:
            db_team = await s.get(Team, payload.id)
            if db_team is None:
                raise NotFoundError("Team not found.")

            if provided(payload.name):
                db_team.name = payload.name
            if provided(payload.mentored):
                db_team.mentored = payload.mentored
            if provided(payload.directory_num):
                db_team.directory_num = payload.directory_num
            if provided(payload.submitted_hyperlinks):
                db_team.submitted_hyperlinks = list(payload.submitted_hyperlinks)

            try:
                await s.flush()
            except IntegrityError as exc:
                raise ValidationError(f"Team name '{db_team.name}' is already in use.") from exc

        return TeamRead.model_validate(db_team)

    async def assign_directory_num(self, team_id: uuid.UUID) -> TeamRead:
        """
        Give the team the next unused directory number of its context (starting at 0).
        A team that already has a non-negative number keeps it.
        """
        async with self.session() as s:
            stmt = select(Team).where(Team.id == team_id).with_for_update()
            team = (await s.execute(stmt)).scalar_one_or_none()
            if team is None:
                raise NotFoundError("Team not found.")
            if team.directory_num is not None and team.directory_num >= 0:
                return TeamRead.model_validate(team)

            context = ContextRef.of(assignment_id=team.assignment_id, course_id=team.course_id)
            max_stmt = select(func.max(Team.directory_num)).where(self._team_in(context))
            max_num = (await s.execute(max_stmt)).scalar_one_or_none()
            team.directory_num = 0 if max_num is None else int(max_num) + 1
            await s.flush()
            return TeamRead.model_validate(team)

    async def _delete_membership_rows(self, s: AsyncSession, membership_ids: List[uuid.UUID]) -> int:
        if not membership_ids:
            return 0
        await s.execute(
            delete(TreeNode).where(
                TreeNode.node_type == NodeType.PARTICIPANT,
                TreeNode.node_object_id.in_(membership_ids),
            )
        )
        result = await s.execute(delete(TeamParticipant).where(TeamParticipant.id.in_(membership_ids)))
        return int(result.rowcount or 0)

    async def _delete_team(self, s: AsyncSession, team_id: uuid.UUID) -> bool:
        membership_ids = list(
            (await s.execute(select(TeamParticipant.id).where(TeamParticipant.team_id == team_id))).scalars().all()
        )
        await self._delete_membership_rows(s, membership_ids)
        await s.execute(delete(TreeNode).where(TreeNode.node_type == NodeType.TEAM, TreeNode.node_object_id == team_id))
        await s.execute(
            delete(ResponseMap).where(
                or_(ResponseMap.reviewee_team_id == team_id, ResponseMap.reviewer_team_id == team_id)
            )
        )
        await s.execute(delete(SignedUpTeam).where(SignedUpTeam.team_id == team_id))
        result = await s.execute(delete(Team).where(Team.id == team_id))
        return bool(result.rowcount)

    async def delete_team(self, team_id: uuid.UUID) -> bool:
        """
        Delete a team with its memberships, tree nodes, review maps and topic signups.

        Returns:
            bool: True if the team existed.
        """
        async with self.session() as s:
            return await self._delete_team(s, team_id)

    # --- memberships ---

    async def _count_members(self, s: AsyncSession, team_id: uuid.UUID, *, exclude_mentors: bool) -> int:
        stmt = select(func.count(TeamParticipant.id)).where(TeamParticipant.team_id == team_id)
        if exclude_mentors:
            stmt = stmt.join(Participant, Participant.id == TeamParticipant.participant_id).where(
                Participant.can_mentor.is_(False)
            )
        return int((await s.execute(stmt)).scalar_one())

    async def _insert_membership(self, s: AsyncSession, team: Team, participant_id: uuid.UUID) -> TeamParticipant:
        membership = TeamParticipant(team_id=team.id, participant_id=participant_id)
        s.add(membership)
        await s.flush()
        team_node = await self._ensure_team_node(s, team)
        s.add(TreeNode(node_type=NodeType.PARTICIPANT, parent_id=team_node.id, node_object_id=membership.id))
        await s.flush()
        return membership

    async def count_members(self, team_id: uuid.UUID, *, exclude_mentors: bool = False) -> int:
        async with self.session() as s:
            return await self._count_members(s, team_id, exclude_mentors=exclude_mentors)

    async def add_membership(
        self,
        team_id: uuid.UUID,
        participant_id: uuid.UUID,
        *,
        capacity: Optional[int] = None,
        exclude_mentors: bool = False,
        enroll_course_id: Optional[uuid.UUID] = None,
    ) -> TeamParticipantRead:
        """
        Atomically add a participant to a team together with its tree node.

        Behavior:
            - Locks the team row (SELECT ... FOR UPDATE) so concurrent additions
              to the same team serialize on the capacity re-check.
            - A non-mentor participant may sit on one team per context.
            - With `enroll_course_id`, the participant's user gets a course
              participant in that course inside the same transaction.

        Raises:
            NotFoundError: If the team or participant does not exist.
            CapacityExceededError: If the locked count already reached `capacity`.
            AlreadyMemberError: If the participant is already on this team
                (or, not being a mentor, on another team of the context).
        """
        async with self.session() as s:
            team = (await s.execute(select(Team).where(Team.id == team_id).with_for_update())).scalar_one_or_none()
            if team is None:
                raise NotFoundError("Team not found.")
            participant = await s.get(Participant, participant_id)
            if participant is None:
                raise NotFoundError("Participant not found.")

            if capacity is not None:
                current = await self._count_members(s, team_id, exclude_mentors=exclude_mentors)
                if current >= capacity:
                    raise CapacityExceededError(f"Team '{team.name}' is full ({current}/{capacity}).")

            existing_stmt = (
                select(TeamParticipant.team_id)
                .join(Team, Team.id == TeamParticipant.team_id)
                .where(
                    TeamParticipant.participant_id == participant_id,
                    self._team_in(ContextRef.of(assignment_id=team.assignment_id, course_id=team.course_id)),
                )
            )
            existing_team_ids = set((await s.execute(existing_stmt)).scalars().all())
            if team_id in existing_team_ids:
                raise AlreadyMemberError(f"Participant is already a member of the team {team.name}.")
            if existing_team_ids and not participant.can_mentor:
                raise AlreadyMemberError("Participant already belongs to another team in this context.")

            membership = await self._insert_membership(s, team, participant_id)

            if enroll_course_id is not None:
                user = await s.get(User, participant.user_id)
                await self._ensure_participant(
                    s,
                    user,
                    ContextRef.of(course_id=enroll_course_id),
                    handle=user.handle,
                    permission_granted=user.master_permission_granted,
                )

            return TeamParticipantRead.model_validate(membership)

    async def copy_memberships(self, source_team_id: uuid.UUID, destination_team_id: uuid.UUID) -> List[TeamParticipantRead]:
        """
        Mirror the source roster into the destination team in one transaction.

        Each member's user is re-resolved (or enrolled) in the destination context,
        keeping the source participant's handle when it is free there.
        The source team is only read.
        """
        async with self.session() as s:
            destination = await s.get(Team, destination_team_id)
            if destination is None:
                raise NotFoundError("Destination team not found.")
            context = ContextRef.of(assignment_id=destination.assignment_id, course_id=destination.course_id)

            stmt = (
                select(Participant, User)
                .join(TeamParticipant, TeamParticipant.participant_id == Participant.id)
                .join(User, User.id == Participant.user_id)
                .where(TeamParticipant.team_id == source_team_id)
                .order_by(TeamParticipant.id.asc())
            )
            rows = (await s.execute(stmt)).all()

            created: List[TeamParticipantRead] = []
            for old_participant, user in rows:
                new_participant, _ = await self._ensure_participant(
                    s,
                    user,
                    context,
                    handle=old_participant.handle,
                    permission_granted=old_participant.permission_granted,
                )
                already = (
                    await s.execute(
                        select(TeamParticipant.id).where(
                            TeamParticipant.team_id == destination_team_id,
                            TeamParticipant.participant_id == new_participant.id,
                        )
                    )
                ).scalar_one_or_none()
                if already is not None:
                    continue
                membership = await self._insert_membership(s, destination, new_participant.id)
                created.append(TeamParticipantRead.model_validate(membership))
            return created

    async def get_membership_by_id(self, membership_id: uuid.UUID) -> Optional[TeamParticipantRead]:
        async with self.session() as s:
            row = await s.get(TeamParticipant, membership_id)
        return TeamParticipantRead.model_validate(row) if row else None

    async def find_membership(self, team_id: uuid.UUID, participant_id: uuid.UUID) -> Optional[TeamParticipantRead]:
        async with self.session() as s:
            stmt = select(TeamParticipant).where(
                TeamParticipant.team_id == team_id,
                TeamParticipant.participant_id == participant_id,
            )
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamParticipantRead.model_validate(row) if row else None

    async def find_user_membership(self, team_id: uuid.UUID, user_id: uuid.UUID) -> Optional[TeamParticipantRead]:
        """Membership of any participant of `user_id` on the team."""
        async with self.session() as s:
            stmt = (
                select(TeamParticipant)
                .join(Participant, Participant.id == TeamParticipant.participant_id)
                .where(TeamParticipant.team_id == team_id, Participant.user_id == user_id)
                .limit(1)
            )
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TeamParticipantRead.model_validate(row) if row else None

    async def get_memberships_by_team(self, team_id: uuid.UUID) -> List[TeamParticipantRead]:
        async with self.session() as s:
            stmt = select(TeamParticipant).where(TeamParticipant.team_id == team_id).order_by(TeamParticipant.id.asc())
            rows = (await s.execute(stmt)).scalars().all()
        return [TeamParticipantRead.model_validate(r) for r in rows]

    async def get_memberships_by_participant(self, participant_id: uuid.UUID) -> List[TeamParticipantRead]:
        async with self.session() as s:
            stmt = select(TeamParticipant).where(TeamParticipant.participant_id == participant_id)
            rows = (await s.execute(stmt)).scalars().all()
        return [TeamParticipantRead.model_validate(r) for r in rows]

    async def list_membership_details(self, team_id: uuid.UUID) -> List[MembershipDetail]:
        """Memberships of a team joined with their participant and user, ordered by user name."""
        async with self.session() as s:
            stmt = (
                select(TeamParticipant, Participant, User)
                .join(Participant, Participant.id == TeamParticipant.participant_id)
                .join(User, User.id == Participant.user_id)
                .where(TeamParticipant.team_id == team_id)
                .order_by(User.name.asc())
            )
            rows = (await s.execute(stmt)).all()
        return [
            MembershipDetail(
                membership=TeamParticipantRead.model_validate(m),
                participant=ParticipantRead.model_validate(p),
                user=UserRead.model_validate(u),
            )
            for m, p, u in rows
        ]

    async def team_has_mentor(self, team_id: uuid.UUID) -> bool:
        async with self.session() as s:
            stmt = (
                select(func.count(TeamParticipant.id))
                .join(Participant, Participant.id == TeamParticipant.participant_id)
                .where(TeamParticipant.team_id == team_id, Participant.can_mentor.is_(True))
            )
            return int((await s.execute(stmt)).scalar_one()) > 0

    async def mentor_team_counts(self, assignment_id: uuid.UUID) -> Dict[uuid.UUID, int]:
        """
        Map every mentor participant of the assignment to the number of the
        assignment's teams they currently belong to (zero included).
        """
        async with self.session() as s:
            stmt = (
                select(Participant.id, func.count(Team.id))
                .select_from(Participant)
                .outerjoin(TeamParticipant, TeamParticipant.participant_id == Participant.id)
                .outerjoin(Team, and_(Team.id == TeamParticipant.team_id, Team.assignment_id == assignment_id))
                .where(Participant.assignment_id == assignment_id, Participant.can_mentor.is_(True))
                .group_by(Participant.id)
            )
            rows = (await s.execute(stmt)).all()
        return {pid: int(count) for pid, count in rows}

    async def find_teams_for_user(self, context: ContextRef, user_id: uuid.UUID) -> List[TeamRead]:
        async with self.session() as s:
            stmt = (
                select(Team)
                .join(TeamParticipant, TeamParticipant.team_id == Team.id)
                .join(Participant, Participant.id == TeamParticipant.participant_id)
                .where(self._team_in(context), self._participant_in(context), Participant.user_id == user_id)
                .order_by(Team.name.asc())
            )
            rows = (await s.execute(stmt)).scalars().unique().all()
        return [TeamRead.model_validate(r) for r in rows]

    async def update_membership_duty(self, membership_id: uuid.UUID, duty: Optional[str]) -> TeamParticipantRead:
        async with self.session() as s:
            db_m = await s.get(TeamParticipant, membership_id)
            if db_m is None:
                raise NotFoundError("Membership not found.")
            db_m.duty = duty
            await s.flush()
        return TeamParticipantRead.model_validate(db_m)

    async def delete_memberships(self, team_id: uuid.UUID, membership_ids: Optional[List[uuid.UUID]] = None) -> int:
        """
        Delete memberships of a team (all of them when `membership_ids` is None)
        together with their participant nodes. Ids of other teams are ignored.
        """
        async with self.session() as s:
            stmt = select(TeamParticipant.id).where(TeamParticipant.team_id == team_id)
            if membership_ids is not None:
                stmt = stmt.where(TeamParticipant.id.in_(membership_ids))
            ids = list((await s.execute(stmt)).scalars().all())
            return await self._delete_membership_rows(s, ids)

    # --- tree nodes ---

    async def get_team_node(self, team_id: uuid.UUID) -> Optional[TreeNodeRead]:
        async with self.session() as s:
            stmt = select(TreeNode).where(TreeNode.node_type == NodeType.TEAM, TreeNode.node_object_id == team_id)
            row = (await s.execute(stmt)).scalar_one_or_none()
        return TreeNodeRead.model_validate(row) if row else None

    async def list_child_nodes(self, parent_id: uuid.UUID) -> List[TreeNodeRead]:
        async with self.session() as s:
            stmt = select(TreeNode).where(TreeNode.parent_id == parent_id).order_by(TreeNode.id.asc())
            rows = (await s.execute(stmt)).scalars().all()
        return [TreeNodeRead.model_validate(r) for r in rows]

    # --- review maps ---

    async def create_response_map(self, payload: ResponseMapCreate) -> ResponseMapRead:
        obj = ResponseMap(
            assignment_id=payload.assignment_id,
            team_reviewing_enabled=payload.team_reviewing_enabled,
            reviewer_participant_id=payload.reviewer_participant_id,
            reviewer_team_id=payload.reviewer_team_id,
            reviewee_team_id=payload.reviewee_team_id,
            reviewee_participant_id=payload.reviewee_participant_id,
        )
        async with self.session() as s:
            s.add(obj)
            await s.flush()
        return ResponseMapRead.model_validate(obj)

    async def list_response_maps(
        self,
        *,
        reviewee_team_id: Optional[uuid.UUID] = None,
        reviewer_participant_id: Optional[uuid.UUID] = None,
        reviewer_team_id: Optional[uuid.UUID] = None,
        assignment_id: Optional[uuid.UUID] = None,
    ) -> List[ResponseMapRead]:
        async with self.session() as s:
            stmt = select(ResponseMap)
            if reviewee_team_id is not None:
                stmt = stmt.where(ResponseMap.reviewee_team_id == reviewee_team_id)
            if reviewer_participant_id is not None:
                stmt = stmt.where(ResponseMap.reviewer_participant_id == reviewer_participant_id)
            if reviewer_team_id is not None:
                stmt = stmt.where(ResponseMap.reviewer_team_id == reviewer_team_id)
            if assignment_id is not None:
                stmt = stmt.where(ResponseMap.assignment_id == assignment_id)
            rows = (await s.execute(stmt.order_by(ResponseMap.id.asc()))).scalars().all()
        return [ResponseMapRead.model_validate(r) for r in rows]

    # ---------------------------------
    # Audit log helpers
    # ---------------------------------

    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        """Persist a new audit log entry."""
        async with self.session() as s:
            record = AuditLog(
                actor_id=payload.actor_id,
                action=payload.action,
                payload=dict(payload.payload or {}),
            )
            s.add(record)
            await s.flush()
            await s.refresh(record)
            return AuditLogRead.model_validate(record)

    async def list_audit_logs(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        """Return paginated audit log entries filtered by actor/action."""
        limit = max(0, int(limit))
        offset = max(0, int(offset))

        async with self.session() as s:
            stmt = select(AuditLog).order_by(AuditLog.created_at.desc())
            count_stmt = select(func.count(AuditLog.id))
            if actor_id:
                stmt = stmt.where(AuditLog.actor_id == actor_id)
                count_stmt = count_stmt.where(AuditLog.actor_id == actor_id)
            if action:
                stmt = stmt.where(AuditLog.action == action)
                count_stmt = count_stmt.where(AuditLog.action == action)

            if limit:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)

            rows = (await s.execute(stmt)).scalars().all()
            total = int((await s.execute(count_stmt)).scalar_one())

        return [AuditLogRead.model_validate(row) for row in rows], total
