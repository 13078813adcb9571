# services/mentor.py
import logging
from uuid import UUID
from typing import ClassVar, List, Optional, Self

from peer_teams.db.database import DataBase
from peer_teams.db.schemas.context import AssignmentRead
from peer_teams.db.schemas.participant import ParticipantRead
from peer_teams.db.schemas.team import TeamRead
from peer_teams.db.schemas.user import UserRead
from peer_teams.i18n import Localizer
from peer_teams.services.audit_log import instrument_service_class
from peer_teams.services.notifications import NotificationService
from peer_teams.services.team import TeamService

logger = logging.getLogger(__name__)


class MentorService:
	"""
	Auto-assigns a mentor to a mentored team once it is more than half full.

	The mentor is the assignment's mentor-capable participant that currently sits
	on the fewest teams of the assignment; ties go to the lowest participant id.
	"""

	_instance: ClassVar[Optional["MentorService"]] = None

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

	async def assign_mentor(self, team: TeamRead) -> Optional[ParticipantRead]:
		if team.assignment_id is None:
			return None
		assignment = await self.database.get_assignment(team.assignment_id)
		if assignment is None or not assignment.auto_assign_mentor:
			return None

		if await self.database.assignment_has_topics(assignment.id) or await self.team_service.topic_id(team) is not None:
			return None

		# mentor-exclusive headcount must be over half of the capacity
		if await self.team_service.size(team) * 2 <= assignment.max_team_size:
			return None

		if await self.database.team_has_mentor(team.id):
			return None

		mentor = await self.select_mentor(assignment.id)
		if mentor is None:
			logger.info("No mentor available for team %s", team.name)
			return None

		mentor_user = await self.database.get_user_by_id(mentor.user_id)
		if not await self.team_service.add_member(team, mentor_user):
			return None

		logger.info("Mentor %s assigned to team %s", mentor_user.name, team.name)
		try:
			await self._notify(team, assignment, mentor_user)
		except Exception:
			# Notification failures never undo the assignment.
			logger.exception("Failed to schedule mentor notifications for team %s", team.id)
		return mentor

	async def select_mentor(self, assignment_id: UUID) -> Optional[ParticipantRead]:
		loads = await self.database.mentor_team_counts(assignment_id)
		if not loads:
			return None
		chosen = min(loads, key=lambda participant_id: (loads[participant_id], participant_id))
		return await self.database.get_participant(chosen)

	async def _notify(self, team: TeamRead, assignment: AssignmentRead, mentor: UserRead) -> None:
		details = await self.database.list_membership_details(team.id)
		members: List[UserRead] = [d.user for d in details if d.user.id != mentor.id]
		roster = "\n".join(
			f"{u.display_full_name} - {u.email}" if u.email else u.display_full_name for u in members
		)

		lz = Localizer()
		mentor_info = f"{mentor.display_full_name} ({mentor.email})" if mentor.email else mentor.display_full_name
		notifier = NotificationService()
		notifier.dispatch(
			members,
			lz.get("notifications.mentor.team.subject"),
			lz.get("notifications.mentor.team.body", mentor=mentor_info, assignment=assignment.name, members=roster),
		)
		notifier.dispatch(
			[mentor],
			lz.get("notifications.mentor.mentor.subject"),
			lz.get("notifications.mentor.mentor.body", assignment=assignment.name, members=roster),
		)


instrument_service_class(MentorService, prefix="services.mentor", exclude={"select_mentor"})
