# services/team_import_export.py
import csv
import io
import logging
import random
from typing import ClassVar, Dict, List, Optional, Self, Sequence
from uuid import UUID

from peer_teams.db.database import DataBase
from peer_teams.db.enums import ContextKind, DuplicateHandling
from peer_teams.db.schemas.context import ContextRef
from peer_teams.db.schemas.import_export import TeamExportOptions, TeamImportOptions, TeamImportRow
from peer_teams.db.schemas.participant import ParticipantRead
from peer_teams.db.schemas.team import TeamRead
from peer_teams.db.schemas.user import UserRead
from peer_teams.errors import ImportRowError, ValidationError
from peer_teams.services.audit_log import instrument_service_class
from peer_teams.services.team import TeamService

logger = logging.getLogger(__name__)


class TeamImportExportService:
	"""Bulk team creation from tabular rows, team export, and random team balancing."""

	_instance: ClassVar[Optional["TeamImportExportService"]] = None

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

	# --- tabular helpers ---

	@staticmethod
	def read_csv(text: str) -> List[List[str]]:
		return [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]

	@staticmethod
	def write_csv(rows: Sequence[Sequence[str]]) -> str:
		buffer = io.StringIO()
		csv.writer(buffer, lineterminator="\n").writerows(rows)
		return buffer.getvalue()

	@staticmethod
	def parse_row(fields: Sequence[str], options: TeamImportOptions) -> TeamImportRow:
		"""First field is the team name when the file carries names; the rest are usernames."""
		fields = [f.strip() for f in fields]
		if options.has_team_name:
			if not fields:
				return TeamImportRow()
			return TeamImportRow(team_name=fields[0] or None, members=fields[1:])
		return TeamImportRow(members=fields)

	# --- import ---

	async def import_row(
		self,
		row: TeamImportRow,
		options: TeamImportOptions,
		*,
		assignment_id: Optional[UUID] = None,
		course_id: Optional[UUID] = None,
	) -> Optional[TeamRead]:
		"""
		Create (or resolve) a team from one row and add the named members.

		Behavior:
			- Every username is resolved and checked before anything is written; an
			  unknown user, an unenrolled user or a member already on another team
			  of the context fails the whole row.
			- Name collisions: IGNORE skips the row (returns None), RENAME picks a
			  fresh generated name, REPLACE deletes the existing team and reuses the
			  name (its own members may be imported again), no policy fails the row.
			- Members already on the team are skipped.

		Raises:
			NotFoundError: the context does not exist.
			ImportRowError: the row cannot be imported.
		"""
		context = ContextRef.of(assignment_id=assignment_id, course_id=course_id)
		participant_service = self.team_service.participant_service
		entity = await participant_service.context_entity(context)

		team_name = (row.team_name or "").strip()
		if not row.members and not team_name:
			raise ImportRowError("Not enough fields on this line.")
		if options.has_team_name and (not team_name or not row.members):
			raise ImportRowError("Not enough fields on this line.")

		users: Dict[str, UserRead] = await self.database.get_users_by_names(row.members)
		participants: Dict[str, ParticipantRead] = {}
		for username in row.members:
			user = users.get(username)
			if user is None:
				raise ImportRowError(f"The user '{username}' was not found.")
			participant = await self.database.find_participant(user.id, context)
			if participant is None:
				raise ImportRowError(f"The user '{username}' is not a participant of {entity.name}.")
			participants[username] = participant

		replaced: Optional[TeamRead] = None
		if options.has_team_name:
			name = team_name
			existing = await self.database.find_team_by_name(context, name)
			if existing is not None:
				handling = options.duplicate_handling
				if handling == DuplicateHandling.IGNORE:
					logger.info("Team %s already exists; row skipped", name)
					return None
				if handling == DuplicateHandling.RENAME:
					name = await self.team_service.generate_team_name(entity.name, context)
				elif handling == DuplicateHandling.REPLACE:
					replaced = existing
				else:
					raise ImportRowError(f"Team name '{name}' is already in use.")
		else:
			name = await self.team_service.generate_team_name(entity.name, context)

		# mentors may sit on several teams; everyone else must be free after the replacement
		for username, participant in participants.items():
			if participant.can_mentor:
				continue
			current = await participant_service.team(participant)
			if current is not None and (replaced is None or current.id != replaced.id):
				raise ImportRowError(f"The user '{username}' is already on the team {current.name}.")

		if replaced is not None:
			await self.team_service.delete(replaced)

		team = await self.team_service.create_team_and_node(
			assignment_id=context.assignment_id,
			course_id=context.course_id,
			name=name,
		)
		for username in row.members:
			user = users[username]
			if await self.team_service.has_as_member(team, user):
				continue
			if not await self.team_service.add_member(team, user):
				logger.warning("Team %s is full; %s not imported", team.name, username)

		logger.info("Imported team %s with %d member(s)", team.name, len(row.members))
		return team

	# --- export ---

	@staticmethod
	def export_fields(kind: ContextKind, options: TeamExportOptions) -> List[str]:
		fields = ["Team Name"]
		if options.include_members:
			fields.append("Team members")
		fields.append("Assignment Name" if kind == ContextKind.ASSIGNMENT else "Course Name")
		return fields

	async def export_rows(self, context: ContextRef, options: TeamExportOptions) -> List[List[str]]:
		rows: List[List[str]] = []
		for team in await self.database.list_teams(context):
			row = [team.name]
			if options.include_members:
				row += [d.user.name for d in await self.database.list_membership_details(team.id)]
			rows.append(row)
		return rows

	# --- balancing ---

	async def create_random_teams(
		self,
		context: ContextRef,
		min_team_size: int,
		rng: Optional[random.Random] = None,
	) -> List[TeamRead]:
		"""
		Place every unassigned, non-mentor participant of the context on a team.

		Existing teams below `min_team_size` are topped off first, largest first;
		whoever is left is split into new teams of `min_team_size` (the last one
		may be smaller). Returns the newly created teams.
		"""
		if min_team_size < 1:
			raise ValidationError("Minimum team size must be positive.")
		await self.team_service.participant_service.context_entity(context)
		rng = rng or random.Random()

		pool = await self.database.list_unassigned_participants(context, exclude_mentors=True)
		rng.shuffle(pool)
		users = [await self.database.get_user_by_id(p.user_id) for p in pool]

		sized = [(await self.team_service.size(team), team) for team in await self.database.list_teams(context)]
		undersized = sorted((entry for entry in sized if entry[0] < min_team_size), key=lambda entry: entry[0], reverse=True)
		for size, team in undersized:
			missing = min_team_size - size
			while missing > 0 and users:
				if not await self.team_service.add_member(team, users[0]):
					break
				users.pop(0)
				missing -= 1
			if not users:
				break

		created: List[TeamRead] = []
		while users:
			chunk, users = users[:min_team_size], users[min_team_size:]
			team = await self.team_service.create_team_and_node(
				assignment_id=context.assignment_id,
				course_id=context.course_id,
			)
			for user in chunk:
				await self.team_service.add_member(team, user)
			created.append(team)

		logger.info("Random teams: %d new team(s) in %s %s", len(created), context.kind, context.id)
		return created


instrument_service_class(
	TeamImportExportService,
	prefix="services.team_import_export",
	exclude={"export_rows"},
)
