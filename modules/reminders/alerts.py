"""Operator alerts sent to the support chat."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from telegram.helpers import escape_markdown

from modules.reminders.channel import TelegramChannel

logger = structlog.get_logger()

ALERT_COOLDOWN = timedelta(hours=24)


@dataclass
class _FailureStats:
    count: int = 0
    last_error: str = ""
    last_alert_at: datetime | None = None


class MonitoringAlerts:
    """Posts lifecycle and failure alerts to ``support_chat_id``.

    Disabled when no support chat is configured.  Never raises.
    """

    def __init__(
        self,
        channel: TelegramChannel,
        support_chat_id: str = "",
        failure_threshold: int = 3,
    ):
        self.channel = channel
        self.support_chat_id = (support_chat_id or "").strip()
        self.failure_threshold = failure_threshold
        self._failures: dict[int, _FailureStats] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.support_chat_id)

    async def notify(self, message: str, is_error: bool = False) -> bool:
        if not self.enabled:
            logger.debug("monitoring_alerts_disabled")
            return False
        timestamp = datetime.now(timezone.utc).isoformat()
        # Messages carry raw error text and user names, never markup
        body = escape_markdown(message, version=1)
        text = f"*Reminder Monitoring Alert*\n\n{'🚨 ' if is_error else ''}{body}\n\n_{timestamp}_"
        try:
            await self.channel.send_message(self.support_chat_id, text, parse_mode="Markdown")
        except Exception as e:
            logger.error("monitoring_alert_failed", error=str(e))
            return False
        logger.info("monitoring_alert_sent", is_error=is_error)
        return True

    async def record_failure(self, recipient_id: int, error: str, name: str | None = None) -> None:
        """Count a terminal failure; alert once the threshold is hit, at most daily per user."""
        stats = self._failures.setdefault(recipient_id, _FailureStats())
        stats.count += 1
        stats.last_error = error

        if stats.count < self.failure_threshold:
            return
        now = datetime.now(timezone.utc)
        if stats.last_alert_at and now - stats.last_alert_at < ALERT_COOLDOWN:
            return

        who = f"{recipient_id} ({name})" if name else str(recipient_id)
        await self.notify(
            f"Failed to send reminder to user {who} {stats.count} times.\n"
            f"Last error: {stats.last_error}",
            is_error=True,
        )
        stats.last_alert_at = now

    def record_success(self, recipient_id: int) -> None:
        self._failures.pop(recipient_id, None)

    def failure_count(self, recipient_id: int) -> int:
        stats = self._failures.get(recipient_id)
        return stats.count if stats else 0
