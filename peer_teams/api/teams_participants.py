# api/teams_participants.py
from typing import Any, Dict, List
from uuid import UUID

from aiohttp import web

from peer_teams.db.enums import ContextKind, UserRole
from peer_teams.db.schemas.user import UserRead
from peer_teams.errors import AuthorizationError, NotFoundError, ValidationError
from peer_teams.services.team import TeamService
from peer_teams.services.user import UserService

routes = web.RouteTableDef()


def _require_privileges(user: UserRead, role: UserRole) -> None:
	if not user.role.has_privileges_of(role):
		raise AuthorizationError("You are not allowed to perform this action.")


def _object_id(raw: str, what: str) -> UUID:
	try:
		return UUID(raw)
	except ValueError:
		raise NotFoundError(f"Couldn't find {what}") from None


async def _body(request: web.Request) -> Dict[str, Any]:
	data = await request.json()
	if not isinstance(data, dict):
		raise ValidationError("Request body must be a JSON object.")
	return data


async def _team(request: web.Request):
	team = await TeamService().database.get_team(_object_id(request.match_info["id"], "Team"))
	if team is None:
		raise NotFoundError("Couldn't find Team")
	return team


@routes.patch("/api/v1/teams_participants/{id}/duty")
async def update_duty(request: web.Request) -> web.Response:
	actor: UserRead = request["current_user"]
	_require_privileges(actor, UserRole.STUDENT)

	body = await _body(request)
	payload = body.get("teams_participant")
	if not isinstance(payload, dict):
		raise ValidationError("Missing 'teams_participant' object.")
	duty = payload.get("duty", payload.get("duty_id"))
	if duty is not None and not isinstance(duty, str):
		duty = str(duty)

	membership_id = _object_id(request.match_info["id"], "TeamsParticipant")
	membership = await TeamService().update_duty(membership_id, duty, actor)
	return web.json_response(
		{"message": "Duty updated successfully", "teams_participant": membership.model_dump(mode="json")}
	)


@routes.get("/api/v1/teams/{id}/participants")
async def list_participants(request: web.Request) -> web.Response:
	_require_privileges(request["current_user"], UserRole.TEACHING_ASSISTANT)

	service = TeamService()
	team = await _team(request)
	memberships = await service.list_memberships(team)
	entity = await service.context_entity(team)
	context_key = "assignment" if team.context_kind == ContextKind.ASSIGNMENT else "course"
	return web.json_response(
		{
			"team_participants": [m.model_dump(mode="json") for m in memberships],
			"team": team.model_dump(mode="json"),
			context_key: entity.model_dump(mode="json"),
		}
	)


@routes.post("/api/v1/teams/{id}/participants")
async def add_participant(request: web.Request) -> web.Response:
	_require_privileges(request["current_user"], UserRole.TEACHING_ASSISTANT)

	body = await _body(request)
	name = str(body.get("name") or "").strip()
	if not name:
		raise ValidationError("Missing participant name.")

	user = await UserService().get_user(name=name)
	if user is None:
		raise NotFoundError("User not found")

	team = await _team(request)
	if not await TeamService().add_member(team, user):
		return web.json_response({"error": "Participant cannot be added to this team"}, status=422)
	return web.json_response({"message": "Participant added successfully."})


@routes.delete("/api/v1/teams/{id}/participants")
async def delete_participants(request: web.Request) -> web.Response:
	_require_privileges(request["current_user"], UserRole.TEACHING_ASSISTANT)

	team = await _team(request)
	body = await _body(request)
	payload = body.get("payload") or {}
	items = payload.get("item") if isinstance(payload, dict) else None
	if items is None:
		items = []
	if not isinstance(items, list):
		raise ValidationError("'payload.item' must be a list of ids.")
	if not items:
		return web.json_response({"error": "No participants selected"})

	ids: List[UUID] = []
	for item in items:
		try:
			ids.append(UUID(str(item)))
		except ValueError:
			raise ValidationError(f"Invalid membership id: {item}") from None

	await TeamService().delete_memberships(team, ids)
	message = "Participant removed successfully" if len(ids) == 1 else "Participants deleted successfully"
	return web.json_response({"message": message})
