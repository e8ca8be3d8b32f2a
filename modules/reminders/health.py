"""On-demand health check of the user store and the messaging channel."""

from __future__ import annotations

import asyncio

import structlog

from modules.reminders.alerts import MonitoringAlerts
from modules.reminders.channel import TelegramChannel
from modules.reminders.store import ReminderStore
from shared.schemas.notifications import HealthCheckResponse

logger = structlog.get_logger()


class HealthMonitor:
    def __init__(
        self,
        store: ReminderStore,
        channel: TelegramChannel,
        alerts: MonitoringAlerts | None = None,
        timeout: float = 5.0,
    ):
        self.store = store
        self.channel = channel
        self.alerts = alerts
        self.timeout = timeout

    async def _store_ok(self) -> bool:
        try:
            await asyncio.wait_for(self.store.ping(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("health_store_timeout", timeout=self.timeout)
            return False
        except Exception as e:
            logger.error("health_store_failed", error=str(e))
            return False
        return True

    def _channel_ok(self) -> bool:
        if not self.channel.has_credentials():
            logger.error("health_channel_misconfigured", reason="telegram token missing")
            return False
        return True

    async def report(self) -> HealthCheckResponse:
        """Run both checks independently. Never raises."""
        store_ok, channel_ok = False, False
        try:
            store_ok = await self._store_ok()
            channel_ok = self._channel_ok()
        except Exception:
            logger.exception("health_check_error")

        result = HealthCheckResponse(
            healthy=store_ok and channel_ok,
            store_ok=store_ok,
            channel_ok=channel_ok,
        )
        if not result.healthy and self.alerts:
            await self.alerts.notify(
                "⚠️ Reminder health check failed:\n"
                f"- Database status: {'OK' if store_ok else 'FAILED'}\n"
                f"- Telegram API status: {'OK' if channel_ok else 'FAILED'}",
                is_error=True,
            )
        logger.info("health_checked", healthy=result.healthy, store_ok=store_ok, channel_ok=channel_ok)
        return result

    async def check_health(self) -> bool:
        return (await self.report()).healthy
