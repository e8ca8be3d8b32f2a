"""Telegram messaging channel used for reminders, broadcasts and operator alerts."""

from __future__ import annotations

import asyncio

import structlog
from telegram import Bot

from modules.reminders.errors import ChannelMisconfigured

logger = structlog.get_logger()

# Default for send_message: use the channel's parse mode. An explicit None sends plain text.
_CHANNEL_PARSE_MODE = object()


class TelegramChannel:
    """Thin wrapper around ``telegram.Bot`` with lazy initialization.

    Exceptions from python-telegram-bot (``telegram.error.*``) propagate
    unchanged; classifying them is the delivery layer's job.
    """

    def __init__(self, token: str, parse_mode: str | None = "HTML"):
        self.token = token
        self.parse_mode = parse_mode
        self._bot: Bot | None = None
        self._lock = asyncio.Lock()

    def has_credentials(self) -> bool:
        return bool(self.token and self.token.strip())

    async def _get_bot(self) -> Bot:
        if not self.has_credentials():
            raise ChannelMisconfigured("TELEGRAM_TOKEN is not set")
        async with self._lock:
            if self._bot is None:
                bot = Bot(self.token)
                await bot.initialize()
                self._bot = bot
                logger.info("telegram_channel_initialized")
        return self._bot

    async def send_message(
        self,
        recipient_id: int | str,
        text: str,
        parse_mode=_CHANNEL_PARSE_MODE,
    ) -> None:
        bot = await self._get_bot()
        await bot.send_message(
            chat_id=recipient_id,
            text=text,
            parse_mode=self.parse_mode if parse_mode is _CHANNEL_PARSE_MODE else parse_mode,
        )

    async def close(self) -> None:
        if self._bot is not None:
            try:
                await self._bot.shutdown()
            finally:
                self._bot = None
