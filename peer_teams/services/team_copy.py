# services/team_copy.py
import logging
from uuid import UUID
from typing import ClassVar, List, Optional, Self

from peer_teams.db.database import DataBase
from peer_teams.db.schemas.context import ContextRef
from peer_teams.db.schemas.team import TeamRead
from peer_teams.db.schemas.team_participant import TeamParticipantRead
from peer_teams.errors import NotFoundError
from peer_teams.services.audit_log import instrument_service_class
from peer_teams.services.team import TeamService

logger = logging.getLogger(__name__)


class TeamCopyService:
	"""Mirrors a team's roster into another assignment or course."""

	_instance: ClassVar[Optional["TeamCopyService"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return

		self.database = DataBase()
		self.team_service = TeamService()
		self._initialized = True

	async def copy_members(self, source: TeamRead, destination: TeamRead) -> List[TeamParticipantRead]:
		"""
		Every member of `source` joins `destination` through a participant of the
		destination context (created when missing, keeping the handle). The source
		team is left untouched and the destination capacity is not enforced.
		"""
		created = await self.database.copy_memberships(source.id, destination.id)
		logger.info("Copied %d member(s) from team %s to team %s", len(created), source.name, destination.name)
		return created

	async def copy_team_to_other_context(
		self,
		source: TeamRead,
		*,
		assignment_id: Optional[UUID] = None,
		course_id: Optional[UUID] = None,
	) -> TeamRead:
		context = ContextRef.of(assignment_id=assignment_id, course_id=course_id)
		try:
			await self.team_service.participant_service.context_entity(context)
		except NotFoundError:
			logger.warning("Cannot copy team %s: %s %s does not exist", source.name, context.kind, context.id)
			raise

		# mentored follows the destination assignment's auto-mentor flag
		new_team = await self.team_service.create_team_and_node(
			assignment_id=context.assignment_id,
			course_id=context.course_id,
			name=source.name,
		)
		await self.copy_members(source, new_team)
		return new_team

	async def copy_to_assignment(self, team: TeamRead, assignment_id: UUID) -> TeamRead:
		return await self.copy_team_to_other_context(team, assignment_id=assignment_id)

	async def copy_to_course(self, team: TeamRead, course_id: UUID) -> TeamRead:
		return await self.copy_team_to_other_context(team, course_id=course_id)


instrument_service_class(TeamCopyService, prefix="services.team_copy")
