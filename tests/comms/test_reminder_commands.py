"""Tests for the Telegram bot's reminder and admin commands."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from comms.telegram_bot.bot import (
    ReminderTelegramBot,
    format_report,
    format_schedule,
    parse_reminder_args,
)
from shared.config import Settings


class TestParseReminderArgs:
    def test_no_args_shows(self):
        assert parse_reminder_args([]).action == "show"

    def test_off(self):
        assert parse_reminder_args(["OFF"]).action == "off"

    def test_time_only(self):
        parsed = parse_reminder_args(["21:00"])
        assert (parsed.action, parsed.local_time, parsed.utc_offset) == ("set", "21:00", None)

    def test_time_and_offset(self):
        parsed = parse_reminder_args(["7:30", "-5:30"])
        assert (parsed.local_time, parsed.utc_offset) == ("7:30", "-5:30")

    @pytest.mark.parametrize("args", [["tomorrow"], ["21:00", "+2", "extra"], ["off", "now"]])
    def test_unrecognised(self, args):
        assert parse_reminder_args(args) is None


class TestFormatting:
    def test_schedule_on(self):
        assert format_schedule({"enabled": True, "display": "21:00 (UTC+2)"}) == (
            "Your daily reminder is set for 21:00 (UTC+2)."
        )

    def test_schedule_off(self):
        assert format_schedule({"enabled": False, "display": "21:00 (UTC+2)"}) == "Your daily reminder is off."

    def test_report(self):
        text = format_report({"enabled_users": 4, "failing": [{"recipient_id": 9, "error": "blocked"}]})
        assert "Users with reminders enabled: 4" in text
        assert "- 9: blocked" in text


def _bot(admin_ids: str = "") -> ReminderTelegramBot:
    bot = ReminderTelegramBot.__new__(ReminderTelegramBot)
    bot.settings = Settings(admin_ids=admin_ids, reminders_url="http://reminders:8000/")
    bot.base_url = "http://reminders:8000"
    return bot


def _update(user_id: int = 7, text: str = "/reminder"):
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_user.first_name = "Ana"
    update.effective_message.text = text
    update.effective_message.reply_text = AsyncMock()
    return update


def _response(status: int, payload: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=payload or {}, request=httpx.Request("GET", "http://reminders"))


class TestReminderCommand:
    @pytest.mark.asyncio
    async def test_set_sends_put(self):
        bot = _bot()
        bot._request = AsyncMock(return_value=_response(200, {"enabled": True, "display": "21:00 (UTC+2)"}))
        update = _update()
        context = MagicMock(args=["21:00", "+2"])

        await bot._handle_reminder(update, context)

        bot._request.assert_awaited_once_with(
            "PUT",
            "/schedule/7",
            json={"enabled": True, "first_name": "Ana", "local_time": "21:00", "utc_offset": "+2"},
        )
        update.effective_message.reply_text.assert_awaited_once_with(
            "Your daily reminder is set for 21:00 (UTC+2)."
        )

    @pytest.mark.asyncio
    async def test_invalid_time_reply(self):
        bot = _bot()
        bot._request = AsyncMock(return_value=_response(422, {"detail": "bad"}))
        update = _update()

        await bot._handle_reminder(update, MagicMock(args=["25:00"]))

        assert "HH:MM" in update.effective_message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_show_without_profile(self):
        bot = _bot()
        bot._request = AsyncMock(return_value=_response(404, {"detail": "none"}))
        update = _update()

        await bot._handle_reminder(update, MagicMock(args=[]))

        bot._request.assert_awaited_once_with("GET", "/schedule/7")
        assert "no reminder yet" in update.effective_message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_service_unreachable(self):
        bot = _bot()
        bot._request = AsyncMock(side_effect=httpx.ConnectError("refused"))
        update = _update()

        await bot._handle_reminder(update, MagicMock(args=["off"]))

        assert "trouble connecting" in update.effective_message.reply_text.await_args.args[0]


class TestAdminCommands:
    @pytest.mark.asyncio
    async def test_non_admin_is_rejected(self):
        bot = _bot(admin_ids="1,2")
        bot._request = AsyncMock()
        update = _update(user_id=7, text="/notifyusers hello")

        await bot._handle_notify_users(update, MagicMock())

        bot._request.assert_not_awaited()
        assert "not allowed" in update.effective_message.reply_text.await_args.args[0]

    @pytest.mark.asyncio
    async def test_broadcast_summary(self):
        bot = _bot(admin_ids="[7]")
        bot._request = AsyncMock(
            return_value=_response(200, {"sent": 2, "failed": 1, "failures": ["3: blocked"]})
        )
        update = _update(user_id=7, text="/notifyusers Maintenance at 22:00")

        await bot._handle_notify_users(update, MagicMock())

        assert bot._request.await_args.kwargs["json"] == {"text": "Maintenance at 22:00"}
        summary = update.effective_message.reply_text.await_args.args[0]
        assert "Sent: 2" in summary
        assert "3: blocked" in summary

    @pytest.mark.asyncio
    async def test_broadcast_requires_text(self):
        bot = _bot(admin_ids="7")
        bot._request = AsyncMock()
        update = _update(user_id=7, text="/notifyusers")

        await bot._handle_notify_users(update, MagicMock())

        bot._request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health(self):
        bot = _bot(admin_ids="7")
        bot._request = AsyncMock(
            return_value=_response(200, {"healthy": False, "store_ok": False, "channel_ok": True})
        )
        update = _update(user_id=7)

        await bot._handle_notify_health(update, MagicMock())

        text = update.effective_message.reply_text.await_args.args[0]
        assert "UNHEALTHY" in text
        assert "Database: FAILED" in text


class TestEntryPoint:
    def test_runs_bot_when_token_set(self):
        from comms.telegram_bot import main as entry

        settings = Settings(telegram_token="123:abc")
        with patch("shared.config.get_settings", return_value=settings), \
                patch("comms.telegram_bot.bot.ReminderTelegramBot") as bot_cls:
            entry.main()

        bot_cls.assert_called_once_with(settings)
        bot_cls.return_value.run.assert_called_once()

    def test_sleeps_without_token(self):
        from comms.telegram_bot import main as entry

        with patch("shared.config.get_settings", return_value=Settings(telegram_token="")), \
                patch("comms.telegram_bot.main.time.sleep", side_effect=KeyboardInterrupt), \
                patch("comms.telegram_bot.bot.ReminderTelegramBot") as bot_cls:
            with pytest.raises(KeyboardInterrupt):
                entry.main()

        bot_cls.assert_not_called()
