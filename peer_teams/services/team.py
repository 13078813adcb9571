# services/team.py
import logging
import re
from pathlib import Path
from uuid import UUID
from typing import ClassVar, Iterable, List, Optional, Self

from peer_teams.db.database import DataBase
from peer_teams.db.enums import ContextKind
from peer_teams.db.schemas.context import AssignmentRead, ContextRef, CourseRead
from peer_teams.db.schemas.participant import ParticipantRead
from peer_teams.db.schemas.response_map import ResponseMapCreate, ResponseMapRead
from peer_teams.db.schemas.team import TeamCreate, TeamRead, TeamUpdate
from peer_teams.db.schemas.team_participant import TeamParticipantRead
from peer_teams.db.schemas.user import UserRead
from peer_teams.errors import (
	AlreadyMemberError, AuthorizationError, CapacityExceededError, MissingParticipantError, NotFoundError,
	ValidationError,
)
from peer_teams.services.audit_log import instrument_service_class
from peer_teams.services.participant import IndividualReviewer, ParticipantService

logger = logging.getLogger(__name__)


class TeamService:
	"""
	Membership rules for teams: capacity, uniqueness, context match and the
	tree-node bookkeeping that goes with every membership.
	"""

	_instance: ClassVar[Optional["TeamService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self.database = DataBase()
		self.participant_service = ParticipantService()
		self._initialized = True

	async def _refresh(self, team: TeamRead) -> TeamRead:
		fresh = await self.database.get_team(team.id)
		if fresh is None:
			raise NotFoundError(f"Team {team.id} not found.")
		return fresh

	async def _assignment_of(self, team: TeamRead) -> AssignmentRead:
		if team.assignment_id is None:
			raise ValidationError(f"Team {team.name} does not belong to an assignment.")
		assignment = await self.database.get_assignment(team.assignment_id)
		if assignment is None:
			raise NotFoundError("The assignment cannot be found.")
		return assignment

	async def context_entity(self, team: TeamRead) -> AssignmentRead | CourseRead:
		return await self.participant_service.context_entity(team.context)

	async def capacity(self, team: TeamRead) -> Optional[int]:
		"""Maximum headcount of the team; None for uncapped course teams."""
		if team.context_kind == ContextKind.COURSE:
			return None
		return (await self._assignment_of(team)).max_team_size

	# --- creation ---

	async def generate_team_name(self, prefix: Optional[str] = "Team", context: Optional[ContextRef] = None) -> str:
		"""`<prefix>_<n>` where n is one more than the highest numeric suffix already in use."""
		prefix = prefix.strip() if prefix and prefix.strip() else "Team"
		pattern = re.compile(rf"^{re.escape(prefix)}_(\d+)$")

		highest = 0
		for name in await self.database.list_team_names_like(prefix, context):
			match = pattern.match(name)
			if match:
				highest = max(highest, int(match.group(1)))
		return f"{prefix}_{highest + 1}"

	async def create_team_and_node(
		self,
		*,
		assignment_id: Optional[UUID] = None,
		course_id: Optional[UUID] = None,
		name: Optional[str] = None,
		user_ids: Iterable[UUID] = (),
		mentored: Optional[bool] = None,
	) -> TeamRead:
		"""
		Create a team together with its tree node.

		Notes:
			- The name defaults to a generated `<context name>_<n>`.
			- `mentored` follows the assignment's auto-mentor flag unless given; course teams are never mentored.
			- Every listed user that is enrolled in the context leaves its current team there and joins the new one.
		"""
		context = ContextRef.of(assignment_id=assignment_id, course_id=course_id)
		entity = await self.participant_service.context_entity(context)

		if isinstance(entity, AssignmentRead):
			mentored = entity.auto_assign_mentor if mentored is None else mentored
		else:
			mentored = False

		team = await self.database.create_team(
			TeamCreate(
				name=name or await self.generate_team_name(entity.name, context),
				context_kind=context.kind,
				assignment_id=context.assignment_id,
				course_id=context.course_id,
				mentored=mentored,
			)
		)
		logger.info("Team %s created in %s %s", team.name, context.kind, context.id)

		for user_id in user_ids:
			participant = await self.database.find_participant(user_id, context)
			if participant is None:
				continue
			previous = await self.participant_service.team(participant)
			if previous is not None:
				membership = await self.database.find_membership(previous.id, participant.id)
				await self.database.delete_memberships(previous.id, [membership.id])
			user = await self.database.get_user_by_id(user_id)
			await self.add_member(team, user)

		return team

	# --- membership ---

	async def _enrollment_course_id(self, team: TeamRead) -> Optional[UUID]:
		if team.assignment_id is None:
			return None
		return (await self._assignment_of(team)).course_id

	async def ensure_cross_context_enrollment(self, team: TeamRead, user: UserRead) -> Optional[ParticipantRead]:
		"""
		Make sure a member of an assignment team is also enrolled in the course the
		assignment belongs to. Returns the course participant, or None when the team
		has no enclosing course.
		"""
		course_id = await self._enrollment_course_id(team)
		if course_id is None:
			return None
		participant, _ = await self.participant_service.find_or_create(user, ContextRef.of(course_id=course_id))
		return participant

	async def add_member(self, team: TeamRead, user: UserRead) -> bool:
		"""
		Add a user to the team.

		Returns:
			bool: False when the team is full, True once the membership is stored.

		Raises:
			AlreadyMemberError: the user (or the resolved participant) is already on the team,
				or the participant sits on another team of the same context.
			MissingParticipantError: the user is not enrolled in the team's context.
		"""
		if await self.has_as_member(team, user):
			raise AlreadyMemberError(f"The user {user.name} is already a member of the team {team.name}.")

		if await self.is_full(team):
			logger.info("Team %s is full; %s not added", team.name, user.name)
			return False

		participant = await self.database.find_participant(user.id, team.context)
		if participant is None:
			raise MissingParticipantError(f"Participant not found for user {user.name} in {team.context_kind} {team.context.id}.")

		if await self.database.find_membership(team.id, participant.id) is not None:
			raise AlreadyMemberError(f"The user {user.name} is already a member of the team {team.name}.")

		try:
			await self.database.add_membership(
				team.id,
				participant.id,
				capacity=await self.capacity(team),
				exclude_mentors=team.mentored,
				enroll_course_id=await self._enrollment_course_id(team),
			)
		except CapacityExceededError:
			logger.info("Team %s filled up concurrently; %s not added", team.name, user.name)
			return False

		logger.info("User %s added to team %s", user.name, team.name)

		if team.mentored:
			from peer_teams.services.mentor import MentorService
			await MentorService().assign_mentor(team)

		return True

	async def remove_member(self, team: TeamRead, user: UserRead) -> None:
		membership = await self.database.find_user_membership(team.id, user.id)
		if membership is None:
			raise NotFoundError(f"The user {user.name} is not a member of the team {team.name}.")
		await self.database.delete_memberships(team.id, [membership.id])
		logger.info("User %s removed from team %s", user.name, team.name)

	async def delete_memberships(self, team: TeamRead, membership_ids: List[UUID]) -> int:
		removed = await self.database.delete_memberships(team.id, list(membership_ids))
		logger.info("%d membership(s) removed from team %s", removed, team.name)
		return removed

	async def delete(self, team: TeamRead) -> bool:
		deleted = await self.database.delete_team(team.id)
		logger.info("Team %s deleted", team.name)
		return deleted

	# --- queries ---

	async def membership_count(self, team: TeamRead) -> int:
		return await self.database.count_members(team.id)

	async def size(self, team: TeamRead) -> int:
		"""Headcount; mentors are not counted on mentored teams."""
		return await self.database.count_members(team.id, exclude_mentors=team.mentored)

	async def is_full(self, team: TeamRead) -> bool:
		capacity = await self.capacity(team)
		if capacity is None:
			return False
		return await self.size(team) >= capacity

	async def participants(self, team: TeamRead) -> List[ParticipantRead]:
		return [d.participant for d in await self.database.list_membership_details(team.id)]

	async def member_names(self, team: TeamRead, anonymized: bool = False) -> List[str]:
		details = await self.database.list_membership_details(team.id)
		if anonymized:
			return [f"Anonymized_Participant_{d.participant.id}" for d in details]
		return [d.user.display_full_name for d in details]

	async def has_as_member(self, team: TeamRead, user: UserRead) -> bool:
		return await self.database.find_user_membership(team.id, user.id) is not None

	async def has_participant(self, team: TeamRead, participant: ParticipantRead) -> bool:
		return await self.database.find_membership(team.id, participant.id) is not None

	@staticmethod
	def display_name(team: TeamRead, anonymized: bool = False) -> str:
		if anonymized:
			return f"Anonymized_Team_{team.id}"
		return team.name

	async def list_memberships(self, team: TeamRead) -> List[TeamParticipantRead]:
		return await self.database.get_memberships_by_team(team.id)

	async def update_duty(self, membership_id: UUID, duty: Optional[str], actor: UserRead) -> TeamParticipantRead:
		"""Only the member who owns the membership may change its duty."""
		membership = await self.database.get_membership_by_id(membership_id)
		if membership is None:
			raise NotFoundError("Couldn't find the team membership.")

		participant = await self.database.get_participant(membership.participant_id)
		if participant is None or participant.user_id != actor.id:
			raise AuthorizationError("You are not authorized to update duty for this participant.")

		return await self.database.update_membership_duty(membership_id, duty)

	async def find_team_for_user(self, context: ContextRef, user: UserRead) -> Optional[TeamRead]:
		teams = await self.database.find_teams_for_user(context, user.id)
		return teams[0] if teams else None

	async def team_for_participant(self, participant: ParticipantRead) -> Optional[TeamRead]:
		return await self.participant_service.team(participant)

	async def first_user_id(self, team: TeamRead) -> Optional[UUID]:
		details = await self.database.list_membership_details(team.id)
		return details[0].user.id if details else None

	# --- storage ---

	async def set_team_directory_num(self, team: TeamRead) -> TeamRead:
		return await self.database.assign_directory_num(team.id)

	async def path(self, team: TeamRead) -> Path:
		team = await self._refresh(team)
		if team.directory_num is None:
			raise ValidationError(f"Team {team.name} has no directory number yet.")
		entity = await self.context_entity(team)
		return Path(entity.directory_path or "") / str(team.directory_num)

	async def hyperlinks(self, team: TeamRead) -> List[str]:
		return list((await self._refresh(team)).submitted_hyperlinks)

	async def submit_hyperlink(self, team: TeamRead, hyperlink: str) -> TeamRead:
		hyperlink = (hyperlink or "").strip()
		if not hyperlink:
			raise ValidationError("The hyperlink cannot be empty!")
		if not hyperlink.startswith(("http://", "https://")):
			hyperlink = "http://" + hyperlink

		links = await self.hyperlinks(team)
		links.append(hyperlink)
		return await self.database.update_team(TeamUpdate(id=team.id, submitted_hyperlinks=links))

	async def remove_hyperlink(self, team: TeamRead, hyperlink: str) -> TeamRead:
		links = [link for link in await self.hyperlinks(team) if link != hyperlink]
		return await self.database.update_team(TeamUpdate(id=team.id, submitted_hyperlinks=links))

	# --- topics and reviews ---

	async def assign_team_to_topic(self, team: TeamRead, topic_id: UUID) -> None:
		await self._assignment_of(team)
		await self.database.sign_up_team(topic_id, team.id)
		logger.info("Team %s signed up for topic %s", team.name, topic_id)

	async def topic_id(self, team: TeamRead) -> Optional[UUID]:
		return await self.database.get_team_topic_id(team.id)

	async def assign_reviewer(self, team: TeamRead, participant: ParticipantRead) -> ResponseMapRead:
		"""Record that the participant's reviewer (the participant or its team) reviews this team."""
		assignment = await self._assignment_of(team)
		reviewer = await self.participant_service.reviewer(participant)
		individual = isinstance(reviewer, IndividualReviewer)
		return await self.database.create_response_map(
			ResponseMapCreate(
				assignment_id=assignment.id,
				team_reviewing_enabled=assignment.team_reviewing_enabled,
				reviewer_participant_id=reviewer.id if individual else None,
				reviewer_team_id=None if individual else reviewer.id,
				reviewee_team_id=team.id,
			)
		)

	async def reviewed_by(self, team: TeamRead, participant: ParticipantRead) -> bool:
		reviewer = await self.participant_service.reviewer(participant)
		if isinstance(reviewer, IndividualReviewer):
			maps = await self.database.list_response_maps(
				reviewee_team_id=team.id, assignment_id=team.assignment_id, reviewer_participant_id=reviewer.id
			)
		else:
			maps = await self.database.list_response_maps(
				reviewee_team_id=team.id, assignment_id=team.assignment_id, reviewer_team_id=reviewer.id
			)
		return bool(maps)

	async def has_been_reviewed(self, team: TeamRead) -> bool:
		return bool(await self.database.list_response_maps(reviewee_team_id=team.id, assignment_id=team.assignment_id))


instrument_service_class(
	TeamService,
	prefix="services.team",
	actor_fields=("actor", "user"),
	exclude={
		"context_entity", "capacity", "generate_team_name", "membership_count", "size", "is_full",
		"participants", "member_names", "has_as_member", "has_participant", "list_memberships",
		"find_team_for_user", "team_for_participant", "first_user_id", "path", "hyperlinks",
		"topic_id", "reviewed_by", "has_been_reviewed",
	},
)
