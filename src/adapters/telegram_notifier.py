"""Telegram notification adapter: implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol.
Identities are Telegram chat ids rendered as strings.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import MessageLimit
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort. Failures are logged, not retried."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, identity: str, text: str) -> None:
        text = text[: MessageLimit.MAX_TEXT_LENGTH]
        try:
            await self._bot.send_message(chat_id=int(identity), text=text)
        except TelegramError as exc:
            logger.warning("Failed to deliver message to %s: %s", identity, exc)
