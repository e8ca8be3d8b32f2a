"""Reminder scheduler: a periodic tick that delivers daily reminders to due users."""

from __future__ import annotations

import asyncio
import html
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from modules.reminders.alerts import MonitoringAlerts
from modules.reminders.clock import format_local_time, from_utc, truncate_to_minute
from modules.reminders.delivery import DeliveryOutcome, RetryCoordinator
from modules.reminders.eligibility import EligibilityQuery
from modules.reminders.errors import InvalidTimeFormat, StoreUnavailable
from modules.reminders.store import ReminderProfile, ReminderStore
from shared.config import DEFAULT_REMINDER_MESSAGE
from shared.delivery_log import record_delivery

logger = structlog.get_logger()

# Wake slightly after the minute boundary so the tick never reads the previous minute.
_TICK_SLACK_SECONDS = 1.0


@dataclass
class TickSummary:
    minute: str
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: str | None = None  # "overlap" | "lease_held" | "store_unavailable" | "error"


def render_reminder(template: str, profile: ReminderProfile) -> str:
    """Fill ``{name}`` and ``{time}`` in the reminder template."""
    display = ""
    if profile.notification_time_utc:
        try:
            local = from_utc(profile.notification_time_utc, profile.utc_offset)
            display = format_local_time(local, profile.utc_offset)
        except InvalidTimeFormat:
            logger.warning(
                "invalid_stored_notification_time",
                recipient_id=profile.recipient_id,
                value=profile.notification_time_utc,
            )
    name = html.escape(profile.first_name or "there")
    return template.replace("{name}", name).replace("{time}", display)


class ReminderScheduler:
    """Owns the timer task and the in-progress flag.

    ``start()`` and ``stop()`` are the only mutators.  Each tick runs as its
    own task so slow deliveries never delay the timer.  The in-progress flag
    covers the lease, the eligibility scan and the dispatch of per-user
    delivery tasks; a tick that fires while another is scanning is skipped,
    never queued.  Deliveries still retrying from an earlier minute do not
    block the next tick, and a user already in flight is not dispatched twice.
    """

    def __init__(
        self,
        store: ReminderStore,
        eligibility: EligibilityQuery,
        coordinator: RetryCoordinator,
        *,
        interval_seconds: float = 60.0,
        max_concurrency: int = 0,
        message_template: str = DEFAULT_REMINDER_MESSAGE,
        alerts: MonitoringAlerts | None = None,
        session_factory=None,
        redis=None,
        lease_seconds: int = 120,
    ):
        self.store = store
        self.eligibility = eligibility
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.max_concurrency = max_concurrency
        self.message_template = message_template
        self.alerts = alerts
        # Optional: delivery log rows are written when a session factory is given
        self.session_factory = session_factory
        self.redis = redis
        self.lease_seconds = lease_seconds

        self._timer: asyncio.Task | None = None
        self._tick_in_progress = False
        self._background: set[asyncio.Task] = set()
        self._in_flight: set[int] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    def start(self) -> None:
        if self.running:
            logger.warning("reminder_scheduler_already_running")
            return
        self._timer = asyncio.create_task(self._run(), name="reminder-scheduler")
        logger.info("reminder_scheduler_started", interval_seconds=self.interval_seconds)
        if self.alerts:
            self._spawn(self.alerts.notify("ℹ️ Reminder scheduler started"))

    def stop(self) -> None:
        """Cancel the timer. Ticks already running are left to finish."""
        if not self.running:
            self._timer = None
            logger.warning("reminder_scheduler_not_running")
            return
        self._timer.cancel()
        self._timer = None
        logger.info("reminder_scheduler_stopped", in_flight=len(self._background))
        if self.alerts:
            self._spawn(self.alerts.notify("⚠️ Reminder scheduler stopped"))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight ticks and alerts started before ``stop()``."""
        pending = [t for t in self._background if not t.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def seconds_until_next_tick(self, now: datetime) -> float:
        interval = self.interval_seconds
        return interval - (now.timestamp() % interval) + _TICK_SLACK_SECONDS

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_next_tick(datetime.now(timezone.utc)))
            self._spawn(self.run_tick())

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def run_tick(self, now: datetime | None = None) -> TickSummary:
        tick_at = truncate_to_minute(now or datetime.now(timezone.utc))
        minute = tick_at.strftime("%H:%M")

        if self._tick_in_progress:
            logger.warning("reminder_tick_skipped_overlap", minute=minute)
            return TickSummary(minute, skipped="overlap")
        self._tick_in_progress = True

        # The flag covers the scan and dispatch only. Retries and backoff run
        # after it is cleared so they never hold up the next minute's tick.
        try:
            summary, deliveries = await self._scan(tick_at)
        except Exception:
            logger.exception("reminder_tick_error", minute=minute)
            return TickSummary(minute, skipped="error")
        finally:
            self._tick_in_progress = False

        if not deliveries:
            return summary

        outcomes = await asyncio.gather(*deliveries, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, DeliveryOutcome) and outcome.success:
                summary.sent += 1
            else:
                summary.failed += 1
                if isinstance(outcome, BaseException):
                    logger.error("reminder_dispatch_crashed", minute=minute, error=str(outcome))
        logger.info(
            "reminder_tick_complete",
            minute=minute,
            due=summary.due,
            sent=summary.sent,
            failed=summary.failed,
        )
        return summary

    async def _scan(self, tick_at: datetime) -> tuple[TickSummary, list[asyncio.Task]]:
        """Claim the minute, find due users and start one delivery task per user."""
        minute = tick_at.strftime("%H:%M")
        if not await self._claim_lease(tick_at):
            return TickSummary(minute, skipped="lease_held"), []

        try:
            due = await self.eligibility.find_due(tick_at)
        except StoreUnavailable as e:
            logger.error("reminder_tick_store_unavailable", minute=minute, error=str(e))
            if self.alerts:
                await self.alerts.notify(
                    f"Reminder check for {minute} UTC skipped, store unavailable: {e}",
                    is_error=True,
                )
            return TickSummary(minute, skipped="store_unavailable"), []

        summary = TickSummary(minute, due=len(due))
        if not due:
            logger.debug("no_due_reminders", minute=minute)
            return summary, []

        logger.info("processing_due_reminders", minute=minute, count=len(due))
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency > 0 else None
        deliveries = []
        for profile in due:
            if profile.recipient_id in self._in_flight:
                # Still retrying from an earlier run of this minute
                logger.info("reminder_already_in_flight", recipient_id=profile.recipient_id)
                summary.due -= 1
                continue
            self._in_flight.add(profile.recipient_id)
            deliveries.append(self._spawn(self._dispatch(profile, tick_at, semaphore)))
        return summary, deliveries

    async def _claim_lease(self, tick_at: datetime) -> bool:
        if self.redis is None:
            return True
        key = f"reminders:tick:{tick_at.strftime('%Y-%m-%dT%H:%M')}"
        try:
            claimed = await self.redis.set(key, "1", nx=True, ex=self.lease_seconds)
        except Exception as e:
            logger.warning("reminder_tick_lease_error", key=key, error=str(e))
            return True
        if not claimed:
            logger.info("reminder_tick_lease_held", key=key)
            return False
        return True

    async def _dispatch(
        self,
        profile: ReminderProfile,
        tick_at: datetime,
        semaphore: asyncio.Semaphore | None,
    ) -> DeliveryOutcome:
        try:
            return await self._deliver_and_record(profile, tick_at, semaphore)
        finally:
            self._in_flight.discard(profile.recipient_id)

    async def _deliver_and_record(
        self,
        profile: ReminderProfile,
        tick_at: datetime,
        semaphore: asyncio.Semaphore | None,
    ) -> DeliveryOutcome:
        """Deliver to one user and record the outcome. Errors stay inside this user's task."""
        recipient_id = profile.recipient_id
        text = render_reminder(self.message_template, profile)
        try:
            async with semaphore or nullcontext():
                outcome = await self.coordinator.deliver(recipient_id, text)
        except Exception as e:
            logger.error("reminder_dispatch_error", recipient_id=recipient_id, error=str(e), exc_info=True)
            outcome = DeliveryOutcome(success=False, error=str(e) or type(e).__name__)

        fields: dict = {"last_notification_attempt_at": tick_at}
        if outcome.success:
            fields["last_notification_sent_at"] = tick_at
            fields["last_notification_error"] = None
        else:
            fields["last_notification_error"] = outcome.error or "unknown error"

        try:
            await self.store.update_notification_fields(recipient_id, **fields)
        except StoreUnavailable as e:
            logger.error("reminder_bookkeeping_failed", recipient_id=recipient_id, error=str(e))

        if outcome.success:
            logger.info("reminder_sent", recipient_id=recipient_id, attempts=outcome.attempts)
            if self.alerts:
                self.alerts.record_success(recipient_id)
        else:
            logger.warning(
                "reminder_failed",
                recipient_id=recipient_id,
                attempts=outcome.attempts,
                permanent=outcome.permanent,
                error=outcome.error,
            )
            if self.alerts:
                await self.alerts.record_failure(recipient_id, outcome.error or "", profile.first_name)

        if self.session_factory is not None:
            await record_delivery(
                self.session_factory,
                recipient_id=recipient_id,
                kind="scheduled",
                success=outcome.success,
                attempts=outcome.attempts,
                error=outcome.error,
            )
        return outcome
