"""Telegram bot front end for daily reminders."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from shared.auth import get_service_auth_headers
from shared.config import Settings

logger = structlog.get_logger()

REMINDER_USAGE = (
    "Usage:\n"
    "/reminder - show your reminder\n"
    "/reminder off - turn reminders off\n"
    "/reminder HH:MM [offset] - remind me daily at HH:MM local time, "
    "e.g. /reminder 21:00 +2"
)


@dataclass
class ReminderArgs:
    """Parsed ``/reminder`` arguments. ``action`` is show, off or set."""

    action: str
    local_time: str | None = None
    utc_offset: str | None = None


def parse_reminder_args(args: list[str]) -> ReminderArgs | None:
    """Parse ``/reminder`` arguments, returning None on unrecognised input.

    Time and offset are passed through unvalidated; the service owns validation.
    """
    if not args:
        return ReminderArgs("show")
    first = args[0].lower()
    if first in ("off", "stop", "disable") and len(args) == 1:
        return ReminderArgs("off")
    if ":" in first and len(args) <= 2:
        return ReminderArgs("set", local_time=args[0], utc_offset=args[1] if len(args) == 2 else None)
    return None


class ReminderTelegramBot:
    """Telegram bot that forwards reminder commands to the reminders service."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.reminders_url.rstrip("/")
        self.app = (
            Application.builder()
            .token(settings.telegram_token)
            .build()
        )
        self._setup_handlers()

    def _setup_handlers(self):
        """Register command handlers."""
        self.app.add_handler(CommandHandler("start", self._handle_start))
        self.app.add_handler(CommandHandler("reminder", self._handle_reminder))
        self.app.add_handler(CommandHandler("notifyusers", self._handle_notify_users))
        self.app.add_handler(CommandHandler("notifyhealth", self._handle_notify_health))
        self.app.add_handler(CommandHandler("notifyreport", self._handle_notify_report))

    def is_admin(self, user_id: int | None) -> bool:
        return user_id is not None and user_id in self.settings.admin_id_list

    async def _request(self, method: str, path: str, timeout: float = 30.0, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(
                method,
                f"{self.base_url}{path}",
                headers=get_service_auth_headers(),
                **kwargs,
            )

    async def _handle_start(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ):
        """Handle the /start command."""
        await update.message.reply_text(
            "Hello! I can send you a daily reminder.\n\n" + REMINDER_USAGE
        )

    # ------------------------------------------------------------------
    # User command
    # ------------------------------------------------------------------

    async def _handle_reminder(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ):
        message = update.effective_message
        user = update.effective_user
        if not message or not user:
            return

        parsed = parse_reminder_args(list(context.args or []))
        if parsed is None:
            await message.reply_text(REMINDER_USAGE)
            return

        try:
            if parsed.action == "show":
                resp = await self._request("GET", f"/schedule/{user.id}")
                if resp.status_code == 404:
                    await message.reply_text("You have no reminder yet.\n\n" + REMINDER_USAGE)
                    return
            else:
                body = {"enabled": parsed.action == "set", "first_name": user.first_name}
                if parsed.action == "set":
                    body["local_time"] = parsed.local_time
                    if parsed.utc_offset is not None:
                        body["utc_offset"] = parsed.utc_offset
                resp = await self._request("PUT", f"/schedule/{user.id}", json=body)
        except httpx.HTTPError as e:
            logger.error("reminders_service_unreachable", user_id=user.id, error=str(e))
            await message.reply_text("Sorry, I'm having trouble connecting. Please try again.")
            return

        if resp.status_code == 422:
            await message.reply_text("That time doesn't look right. Use HH:MM, e.g. 21:00.")
            return
        if resp.status_code != 200:
            logger.warning("reminder_command_failed", user_id=user.id, status=resp.status_code)
            await message.reply_text("Sorry, I couldn't update your reminder. Please try again.")
            return

        await message.reply_text(format_schedule(resp.json()))

    # ------------------------------------------------------------------
    # Admin commands
    # ------------------------------------------------------------------

    async def _require_admin(self, update: Update) -> bool:
        user = update.effective_user
        if self.is_admin(user.id if user else None):
            return True
        logger.warning("admin_command_denied", user_id=user.id if user else None)
        await update.effective_message.reply_text("You are not allowed to use this command.")
        return False

    async def _handle_notify_users(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ):
        """/notifyusers <text> - broadcast to every user."""
        if not await self._require_admin(update):
            return
        message = update.effective_message
        text = message.text.partition(" ")[2].strip() if message.text else ""
        if not text:
            await message.reply_text("Usage: /notifyusers <message>")
            return

        await message.reply_text("Sending broadcast...")
        try:
            # A broadcast walks every user with pacing, so allow it plenty of time
            resp = await self._request("POST", "/broadcast", timeout=600.0, json={"text": text})
        except httpx.HTTPError as e:
            logger.error("broadcast_request_failed", error=str(e))
            await message.reply_text(f"Broadcast failed: {e}")
            return
        if resp.status_code != 200:
            await message.reply_text(f"Broadcast failed: HTTP {resp.status_code}")
            return

        result = resp.json()
        lines = [f"Broadcast complete.\nSent: {result['sent']}\nFailed: {result['failed']}"]
        if result.get("failures"):
            lines.append("Sample failures:")
            lines.extend(result["failures"])
        await message.reply_text("\n".join(lines))

    async def _handle_notify_health(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ):
        if not await self._require_admin(update):
            return
        message = update.effective_message
        try:
            resp = await self._request("GET", "/health/check")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            await message.reply_text(f"Health check failed: {e}")
            return

        status = "healthy" if data["healthy"] else "UNHEALTHY"
        await message.reply_text(
            f"Reminder system is {status}.\n"
            f"Database: {'OK' if data['store_ok'] else 'FAILED'}\n"
            f"Telegram API: {'OK' if data['channel_ok'] else 'FAILED'}"
        )

    async def _handle_notify_report(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ):
        if not await self._require_admin(update):
            return
        message = update.effective_message
        try:
            resp = await self._request("GET", "/report")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            await message.reply_text(f"Report failed: {e}")
            return
        await message.reply_text(format_report(data))

    def run(self):
        """Start the bot with polling."""
        logger.info("starting_telegram_bot")
        self.app.run_polling(drop_pending_updates=True)


def format_schedule(view: dict) -> str:
    if not view.get("enabled"):
        return "Your daily reminder is off."
    if not view.get("display"):
        return "Your daily reminder is on, but no time is set."
    return f"Your daily reminder is set for {view['display']}."


def format_report(report: dict) -> str:
    lines = [f"Users with reminders enabled: {report['enabled_users']}"]
    failing = report.get("failing") or []
    if not failing:
        lines.append("No failing deliveries.")
    else:
        lines.append(f"Failing deliveries ({len(failing)}):")
        for item in failing:
            lines.append(f"- {item['recipient_id']}: {item['error']}")
    return "\n".join(lines)
