"""Telegram notification adapter — implements NotificationPort.

Timer start, stop and progress messages are delivered as plain chat
messages to the user's private chat with the bot.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=user_id, text=text)
        except TelegramError as exc:
            logger.warning("Telegram delivery to %s failed: %s", user_id, exc)
            raise
