"""Notifier: sends chat messages to users. Failures are logged, never raised."""
import logging
from typing import Protocol

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, user_id: str, text: str) -> None: ...


class TelegramNotifier:
    """Delivers text through the Telegram Bot API; user_id is the chat id."""

    def __init__(self, token: str) -> None:
        self.bot = Bot(token=token)

    async def start(self) -> None:
        await self.bot.initialize()

    async def close(self) -> None:
        await self.bot.shutdown()

    async def notify(self, user_id: str, text: str) -> None:
        try:
            await self.bot.send_message(chat_id=user_id, text=text)
        except TelegramError as exc:
            logger.warning("Failed to send message to %s: %s", user_id, exc)


class LoggingNotifier:
    """Used when no bot token is configured."""

    async def notify(self, user_id: str, text: str) -> None:
        logger.info("[to %s] %s", user_id, text)
