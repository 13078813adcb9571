"""Notification service that delivers messages to users outside of the membership transaction."""
from __future__ import annotations

import asyncio
import logging
from typing import ClassVar, Optional, Sequence, Set

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError, TelegramNetworkError

from peer_teams.config import Settings
from peer_teams.db.schemas.user import UserRead

logger = logging.getLogger(__name__)


class NotificationService:
	"""Singleton that schedules deliveries as background tasks so callers never wait on (or fail with) them."""

	_instance: ClassVar[Optional["NotificationService"]] = None

	def __new__(cls) -> "NotificationService":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return
		self._initialized = True
		self._bot: Optional[Bot] = None
		self._pending: Set[asyncio.Task] = set()

	def bind_bot(self, bot: Bot) -> None:
		"""Provide the active bot instance so messages can be delivered."""
		self._bot = bot
		logger.info("Notifier bound to bot %s", getattr(bot, "id", None))

	def dispatch(self, recipients: Sequence[UserRead], subject: str, body: str) -> asyncio.Task:
		"""Schedule delivery of one message to every recipient and return the task."""
		prefix = Settings().notification_subject_prefix
		text = f"{prefix} {subject}\n\n{body}" if prefix else f"{subject}\n\n{body}"
		task = asyncio.create_task(self._deliver(list(recipients), text))
		self._pending.add(task)
		task.add_done_callback(self._on_done)
		return task

	async def drain(self) -> None:
		"""Wait for every scheduled delivery to finish."""
		while self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)

	def _on_done(self, task: asyncio.Task) -> None:
		self._pending.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Notification delivery task failed", exc_info=exc)

	async def _deliver(self, recipients: Sequence[UserRead], text: str) -> None:
		bot = self._bot
		if bot is None:
			logger.debug("No active bot instance; %d notification(s) skipped", len(recipients))
			return

		for user in recipients:
			chat_id = getattr(user, "tg_id", None)
			if not isinstance(chat_id, int):
				logger.debug("User %s has no tg_id; skipping notification", user.id)
				continue

			try:
				await bot.send_message(chat_id=chat_id, text=text)
			except (TelegramForbiddenError, TelegramBadRequest, TelegramNetworkError):
				# user blocked the bot, chat vanished, transport hiccup
				logger.warning("Failed to deliver notification to user %s", user.id, exc_info=True)
				continue
			logger.info("Notification sent to user %s", user.id)


notifier = NotificationService()
