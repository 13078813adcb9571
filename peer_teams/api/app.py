# api/app.py
from aiohttp import web

from peer_teams.api.middlewares import current_user_middleware, error_middleware
from peer_teams.api.teams_participants import routes as teams_participants_routes


def create_app() -> web.Application:
	app = web.Application(middlewares=[error_middleware, current_user_middleware])
	app.add_routes(teams_participants_routes)
	return app
