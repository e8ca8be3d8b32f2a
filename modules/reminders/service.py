"""Facade exposing the reminders engine to the rest of the application."""

from __future__ import annotations

from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.reminders.alerts import MonitoringAlerts
from modules.reminders.broadcast import BroadcastSender
from modules.reminders.channel import TelegramChannel
from modules.reminders.clock import (
    format_local_time,
    from_utc,
    normalize_offset,
    normalize_time,
    to_utc,
)
from modules.reminders.delivery import DeliveryAttempt, RetryCoordinator
from modules.reminders.eligibility import EligibilityQuery
from modules.reminders.errors import InvalidOffset, InvalidTimeFormat, ProfileNotFound
from modules.reminders.health import HealthMonitor
from modules.reminders.store import ReminderProfile, ReminderStore
from modules.reminders.worker import ReminderScheduler, TickSummary
from shared.config import Settings
from shared.schemas.notifications import (
    BroadcastResult,
    DeliveryReport,
    FailingRecipient,
    HealthCheckResponse,
    ScheduleView,
)

logger = structlog.get_logger()


class ReminderService:
    """Wires store, channel, scheduler, health monitor and broadcaster together."""

    def __init__(
        self,
        store: ReminderStore,
        channel: TelegramChannel,
        scheduler: ReminderScheduler,
        health: HealthMonitor,
        broadcaster: BroadcastSender,
    ):
        self.store = store
        self.channel = channel
        self.scheduler = scheduler
        self.health = health
        self.broadcaster = broadcaster

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        redis=None,
    ) -> ReminderService:
        store = ReminderStore(session_factory, timeout=settings.reminder_store_timeout_seconds)
        channel = TelegramChannel(settings.telegram_token)
        alerts = MonitoringAlerts(
            channel,
            support_chat_id=settings.support_chat_id,
            failure_threshold=settings.reminder_alert_threshold,
        )
        attempt = DeliveryAttempt(channel, timeout=settings.reminder_send_timeout_seconds)
        coordinator = RetryCoordinator(
            attempt,
            max_attempts=settings.reminder_max_attempts,
            base_delay=settings.reminder_backoff_base_seconds,
            max_delay=settings.reminder_backoff_max_seconds,
        )
        scheduler = ReminderScheduler(
            store,
            EligibilityQuery(store, window=timedelta(hours=settings.reminder_dedup_hours)),
            coordinator,
            interval_seconds=settings.reminder_tick_seconds,
            max_concurrency=settings.reminder_max_concurrency,
            message_template=settings.reminder_message,
            alerts=alerts,
            session_factory=session_factory,
            redis=redis,
            lease_seconds=settings.tick_lease_seconds,
        )
        health = HealthMonitor(
            store, channel, alerts=alerts, timeout=settings.reminder_store_timeout_seconds
        )
        broadcaster = BroadcastSender(
            store,
            DeliveryAttempt(channel, timeout=settings.reminder_send_timeout_seconds, plain_text=True),
            pacing_seconds=settings.broadcast_pacing_seconds,
            failure_sample=settings.broadcast_failure_sample,
            session_factory=session_factory,
        )
        return cls(store, channel, scheduler, health, broadcaster)

    # ------------------------------------------------------------------
    # Scheduler lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    async def shutdown(self, drain_timeout: float = 30.0) -> None:
        self.scheduler.stop()
        await self.scheduler.drain(timeout=drain_timeout)
        await self.channel.close()

    async def run_tick(self) -> TickSummary:
        return await self.scheduler.run_tick()

    # ------------------------------------------------------------------
    # Settings surface
    # ------------------------------------------------------------------

    async def update_user_schedule(
        self,
        recipient_id: int,
        enabled: bool,
        local_time: str | None = None,
        utc_offset: str | None = None,
        first_name: str | None = None,
    ) -> ScheduleView:
        """Store the user's settings, converting local time to UTC.

        A malformed time raises InvalidTimeFormat; a malformed offset is
        stored as ``+0``.  When only the time is given, the user's stored
        offset is used for the conversion.
        """
        offset = None
        if utc_offset is not None:
            try:
                offset = normalize_offset(utc_offset)
            except InvalidOffset:
                logger.warning(
                    "invalid_utc_offset", recipient_id=recipient_id, offset=utc_offset, fallback="+0"
                )
                offset = "+0"

        time_utc = None
        if local_time is not None:
            local_time = normalize_time(local_time)
            effective_offset = offset
            if effective_offset is None:
                current = await self.store.get_profile(recipient_id)
                effective_offset = current.utc_offset if current else "+0"
            time_utc = to_utc(local_time, effective_offset)
            logger.info(
                "reminder_time_changed",
                recipient_id=recipient_id,
                utc_time=time_utc,
                local_time=local_time,
                utc_offset=effective_offset,
            )
        elif offset is not None:
            # Keep the user's local wall-clock time when only the offset changes
            current = await self.store.get_profile(recipient_id)
            if current and current.notification_time_utc:
                local = from_utc(current.notification_time_utc, current.utc_offset)
                time_utc = to_utc(local, offset)

        profile = await self.store.save_schedule(
            recipient_id,
            enabled=enabled,
            time_utc=time_utc,
            utc_offset=offset,
            first_name=first_name,
        )
        logger.info("reminder_schedule_updated", recipient_id=recipient_id, enabled=enabled)
        return self._view(profile)

    async def get_user_schedule(self, recipient_id: int) -> ScheduleView:
        profile = await self.store.get_profile(recipient_id)
        if profile is None:
            raise ProfileNotFound(f"No profile for recipient {recipient_id}")
        return self._view(profile)

    def _view(self, profile: ReminderProfile) -> ScheduleView:
        view = ScheduleView(
            recipient_id=profile.recipient_id,
            enabled=profile.notifications_enabled,
            utc_offset=profile.utc_offset,
        )
        if not profile.notification_time_utc:
            return view
        try:
            local = from_utc(profile.notification_time_utc, profile.utc_offset)
        except InvalidTimeFormat:
            logger.warning(
                "invalid_stored_notification_time",
                recipient_id=profile.recipient_id,
                value=profile.notification_time_utc,
            )
            return view
        view.utc_time = profile.notification_time_utc
        view.local_time = local
        view.display = format_local_time(local, profile.utc_offset)
        return view

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        return await self.health.check_health()

    async def health_report(self) -> HealthCheckResponse:
        return await self.health.report()

    async def broadcast(self, text: str) -> BroadcastResult:
        return await self.broadcaster.broadcast(text)

    async def delivery_report(self, limit: int = 20) -> DeliveryReport:
        enabled = await self.store.count_enabled()
        failing = await self.store.list_failing(limit=limit)
        return DeliveryReport(
            enabled_users=enabled,
            failing=[
                FailingRecipient(
                    recipient_id=p.recipient_id,
                    error=p.last_notification_error or "",
                    last_attempt_at=p.last_notification_attempt_at,
                )
                for p in failing
            ],
        )
