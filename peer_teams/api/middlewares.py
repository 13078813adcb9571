# api/middlewares.py
import json
import logging
from typing import Awaitable, Callable
from uuid import UUID

import pydantic
from aiohttp import web

from peer_teams.errors import (
	AlreadyMemberError, AuthorizationError, CapacityExceededError, NotFoundError, PeerTeamsError, ValidationError,
)
from peer_teams.services.audit_log import audit_logger
from peer_teams.services.user import UserService

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

USER_HEADER = "X-User-Id"


def _error(status: int, message: str) -> web.Response:
	return web.json_response({"error": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
	"""Translate domain failures into HTTP status codes."""
	try:
		return await handler(request)
	except (json.JSONDecodeError, pydantic.ValidationError, ValidationError) as exc:
		return _error(400, str(exc))
	except AuthorizationError as exc:
		return _error(403, str(exc))
	except NotFoundError as exc:
		return _error(404, str(exc))
	except (AlreadyMemberError, CapacityExceededError) as exc:
		return _error(422, str(exc))
	except PeerTeamsError as exc:
		logger.warning("Unmapped domain error on %s %s", request.method, request.path, exc_info=True)
		return _error(422, str(exc))


@web.middleware
async def current_user_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
	"""
	Resolve the acting user from the `X-User-Id` header (authentication happens
	upstream) and bind it as the audit actor for the duration of the request.
	"""
	raw = request.headers.get(USER_HEADER, "").strip()
	try:
		user_id = UUID(raw)
	except ValueError:
		return _error(403, "Unknown user.")

	user = await UserService().get_user(uid=user_id)
	if user is None:
		return _error(403, "Unknown user.")

	request["current_user"] = user
	token = audit_logger.bind_actor(user.id)
	try:
		return await handler(request)
	finally:
		audit_logger.unbind_actor(token)
