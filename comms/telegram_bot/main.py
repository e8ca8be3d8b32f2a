"""Entry point for the reminders Telegram bot.

Starts the bot that takes ``/reminder`` and the admin ``/notify*`` commands
and forwards them to the reminders service.
"""

from __future__ import annotations

import time

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


def main():
    from shared.config import get_settings

    settings = get_settings()

    if not settings.telegram_token:
        logger.warning("telegram_token_not_set", msg="Set TELEGRAM_TOKEN to enable reminder commands. Sleeping.")
        # Sleep indefinitely so Docker doesn't restart-loop and spam logs
        while True:
            time.sleep(86400)

    from comms.telegram_bot.bot import ReminderTelegramBot

    bot = ReminderTelegramBot(settings)
    logger.info("reminder_bot_starting", reminders_url=settings.reminders_url)
    bot.run()


if __name__ == "__main__":
    main()
