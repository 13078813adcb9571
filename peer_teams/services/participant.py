# services/participant.py
import logging
from dataclasses import dataclass
from uuid import UUID
from typing import ClassVar, List, Optional, Self, Tuple

from peer_teams.db.database import DataBase
from peer_teams.db.enums import AuthorizationRole, ContextKind
from peer_teams.db.schemas.context import AssignmentRead, ContextRef, CourseRead
from peer_teams.db.schemas.import_export import ParticipantExportOptions, ParticipantImportRow
from peer_teams.db.schemas.participant import Capabilities, ParticipantCreate, ParticipantRead, ParticipantUpdate
from peer_teams.db.schemas.team import TeamRead
from peer_teams.db.schemas.user import UserCreate, UserRead
from peer_teams.errors import DuplicateContextError, ImportRowError, NotFoundError, ValidationError
from peer_teams.services.audit_log import instrument_service_class

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndividualReviewer:
	participant: ParticipantRead

	@property
	def id(self) -> UUID:
		return self.participant.id


@dataclass(frozen=True)
class TeamReviewer:
	team: TeamRead

	@property
	def id(self) -> UUID:
		return self.team.id


Reviewer = IndividualReviewer | TeamReviewer


class ParticipantService:
	"""Binds users to assignments and courses and answers questions about those bindings."""

	_instance: ClassVar[Optional["ParticipantService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self.database = DataBase()
		self._initialized = True

	async def context_entity(self, context: ContextRef) -> AssignmentRead | CourseRead:
		"""Load the assignment or course behind a context reference, raising NotFoundError if absent."""
		if context.kind == ContextKind.ASSIGNMENT:
			entity = await self.database.get_assignment(context.id)
		else:
			entity = await self.database.get_course(context.id)
		if entity is None:
			raise NotFoundError(f"The {context.kind} with id {context.id} was not found.")
		return entity

	async def _require_user(self, user_id: UUID) -> UserRead:
		user = await self.database.get_user_by_id(user_id)
		if user is None:
			raise NotFoundError("User not found.")
		return user

	async def _pick_handle(self, user: UserRead, context: ContextRef, exclude_id: Optional[UUID] = None) -> str:
		personal = (user.handle or "").strip()
		if not personal:
			return user.name
		if await self.database.participant_handle_taken(context, personal, exclude_id):
			return user.name
		return personal

	async def bind_context(
		self,
		user: UserRead,
		*,
		assignment_id: Optional[UUID] = None,
		course_id: Optional[UUID] = None,
		**capabilities: bool,
	) -> ParticipantRead:
		"""
		Enroll a user into exactly one assignment or course.

		Raises:
			ValidationError: both or neither context ids were given.
			NotFoundError: the context does not exist.
			DuplicateContextError: the user is already bound to that context.
		"""
		context = ContextRef.of(assignment_id=assignment_id, course_id=course_id)
		await self.context_entity(context)

		if await self.database.find_participant(user.id, context) is not None:
			raise DuplicateContextError(f"User {user.name} is already a participant of this {context.kind}.")

		flags = Capabilities(**capabilities)
		participant = await self.database.create_participant(
			ParticipantCreate(
				user_id=user.id,
				context_kind=context.kind,
				assignment_id=context.assignment_id,
				course_id=context.course_id,
				handle=await self._pick_handle(user, context),
				permission_granted=user.master_permission_granted,
				**flags.model_dump(),
			)
		)
		logger.info("User %s enrolled into %s %s", user.name, context.kind, context.id)
		return participant

	async def compute_handle(self, participant: ParticipantRead) -> str:
		"""
		Personal handle of the user unless it is blank or already used by another
		participant of the same context; the user name otherwise.
		"""
		user = await self._require_user(participant.user_id)
		handle = await self._pick_handle(user, participant.context, exclude_id=participant.id)
		if handle != participant.handle:
			await self.database.update_participant(ParticipantUpdate(id=participant.id, handle=handle))
		return handle

	@staticmethod
	def authorization_role(flags: Capabilities) -> AuthorizationRole:
		# mentor wins over every other combination
		if flags.can_mentor:
			return AuthorizationRole.MENTOR
		if not flags.can_submit and flags.can_review and flags.can_take_quiz:
			return AuthorizationRole.READER
		if flags.can_submit and not flags.can_review and not flags.can_take_quiz:
			return AuthorizationRole.SUBMITTER
		if not flags.can_submit and flags.can_review and not flags.can_take_quiz:
			return AuthorizationRole.REVIEWER
		return AuthorizationRole.PARTICIPANT

	async def find_or_create(self, user: UserRead, context: ContextRef) -> Tuple[ParticipantRead, bool]:
		participant, created = await self.database.find_or_create_participant(
			user.id,
			context,
			handle=(user.handle or "").strip() or None,
			permission_granted=user.master_permission_granted,
		)
		if created:
			logger.info("User %s auto-enrolled into %s %s", user.name, context.kind, context.id)
		return participant, created

	async def copy_to_course(self, participant: ParticipantRead, course_id: UUID) -> ParticipantRead:
		user = await self._require_user(participant.user_id)
		copied, _ = await self.find_or_create(user, ContextRef.of(course_id=course_id))
		return copied

	async def copy_to_assignment(self, participant: ParticipantRead, assignment_id: UUID) -> ParticipantRead:
		user = await self._require_user(participant.user_id)
		copied, _ = await self.find_or_create(user, ContextRef.of(assignment_id=assignment_id))
		return copied

	async def delete(self, participant: ParticipantRead, force: bool = False) -> None:
		await self.database.delete_participant(participant.id, force=force)
		logger.info("Participant %s deleted (force=%s)", participant.id, force)

	async def team(self, participant: ParticipantRead) -> Optional[TeamRead]:
		"""The team of the participant within the participant's own context."""
		for membership in await self.database.get_memberships_by_participant(participant.id):
			team = await self.database.get_team(membership.team_id)
			if team is not None and team.context == participant.context:
				return team
		return None

	async def reviewer(self, participant: ParticipantRead) -> Reviewer:
		"""
		Who reviews on behalf of the participant: the participant's team when the
		assignment has team reviewing enabled, the participant otherwise.
		"""
		if participant.assignment_id is None:
			raise ValidationError("Only assignment participants can review.")
		assignment = await self.context_entity(participant.context)
		if not assignment.team_reviewing_enabled:
			return IndividualReviewer(participant)

		team = await self.team(participant)
		if team is None:
			raise NotFoundError(f"Participant {participant.id} has no team to review with.")
		return TeamReviewer(team)

	async def reviewers(self, participant: ParticipantRead) -> List[ParticipantRead]:
		"""Participants who reviewed the participant's team."""
		team = await self.team(participant)
		if team is None:
			return []

		found: List[ParticipantRead] = []
		for review_map in await self.database.list_response_maps(reviewee_team_id=team.id):
			if review_map.reviewer_participant_id is not None:
				reviewer = await self.database.get_participant(review_map.reviewer_participant_id)
				if reviewer is not None:
					found.append(reviewer)
			elif review_map.reviewer_team_id is not None:
				found.extend(d.participant for d in await self.database.list_membership_details(review_map.reviewer_team_id))
		return found

	async def import_row(
		self,
		row: ParticipantImportRow,
		*,
		assignment_id: Optional[UUID] = None,
		course_id: Optional[UUID] = None,
	) -> Optional[ParticipantRead]:
		"""
		Enroll the user named by a tabular row, creating the user when the row carries
		enough fields. Returns None when the user is already enrolled.
		"""
		username = (row.username or "").strip()
		if not username:
			raise ImportRowError("No username provided.")

		context = ContextRef.of(assignment_id=assignment_id, course_id=course_id)
		await self.context_entity(context)

		user = await self.database.get_user_by_name(username)
		if user is None:
			if row.field_count() < 4:
				raise ImportRowError(f"Row for '{username}' does not contain enough fields to create a new user.")
			user = await self.database.create_user(
				UserCreate(name=username, full_name=row.full_name, email=row.email or None)
			)
			logger.info("Imported new user %s", username)

		if await self.database.find_participant(user.id, context) is not None:
			return None

		return await self.bind_context(user, assignment_id=assignment_id, course_id=course_id)

	@staticmethod
	def export_fields(options: ParticipantExportOptions) -> List[str]:
		fields: List[str] = []
		if options.personal_details:
			fields += ["name", "full name", "email"]
		if options.role:
			fields.append("role")
		if options.handle:
			fields.append("handle")
		return fields

	async def export_rows(self, context: ContextRef, options: ParticipantExportOptions) -> List[List[str]]:
		rows: List[List[str]] = []
		for participant, user in await self.database.list_participant_details(context):
			row: List[str] = []
			if options.personal_details:
				row += [user.name, user.full_name or "", str(user.email or "")]
			if options.role:
				row.append(str(user.role))
			if options.handle:
				row.append(participant.handle or "")
			rows.append(row)
		return rows

	async def display_name(self, participant: ParticipantRead, *, anonymized: bool) -> str:
		if anonymized:
			return f"Anonymized_Participant_{participant.id}"
		user = await self._require_user(participant.user_id)
		return user.display_full_name


instrument_service_class(
	ParticipantService,
	prefix="services.participant",
	actor_fields=("user",),
	exclude={"context_entity", "team", "reviewer", "reviewers", "export_rows", "display_name"},
)
