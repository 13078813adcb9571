# run_api.py
import logging

from aiogram import Bot
from aiohttp import web

from peer_teams.config import Settings
from peer_teams.db.database import DataBase
from peer_teams.api.app import create_app
from peer_teams.services.notifications import notifier

logger = logging.getLogger(__name__)

BOT_KEY = web.AppKey("bot", Bot)


async def on_startup(app: web.Application) -> None:
    await DataBase().create_all()


async def on_cleanup(app: web.Application) -> None:
    await notifier.drain()
    bot = app.get(BOT_KEY)
    if bot is not None:
        await bot.session.close()
    await DataBase().dispose()


def main() -> None:
    settings = Settings()
    logging.basicConfig(level=settings.log_level)

    app = create_app()
    if settings.bot_token:
        bot = Bot(settings.bot_token)
        notifier.bind_bot(bot)
        app[BOT_KEY] = bot
    else:
        logger.warning("BOT_TOKEN is not set; notifications will be skipped.")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    web.run_app(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
