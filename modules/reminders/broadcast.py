"""Operator broadcast to every user, paced to stay under channel rate limits."""

from __future__ import annotations

import asyncio

import structlog

from modules.reminders.delivery import Delivered, DeliveryAttempt
from modules.reminders.store import ReminderStore
from shared.delivery_log import record_delivery
from shared.schemas.notifications import BroadcastResult

logger = structlog.get_logger()

_PROGRESS_EVERY = 20


class BroadcastSender:
    """Sends one text to every profile, one attempt each.

    A failure for one user is counted and sampled but never stops the run.
    """

    def __init__(
        self,
        store: ReminderStore,
        attempt: DeliveryAttempt,
        *,
        pacing_seconds: float = 0.1,
        failure_sample: int = 5,
        session_factory=None,
    ):
        self.store = store
        self.attempt = attempt
        self.pacing_seconds = pacing_seconds
        self.failure_sample = failure_sample
        self.session_factory = session_factory

    async def broadcast(self, text: str) -> BroadcastResult:
        profiles = await self.store.list_all_profiles()
        result = BroadcastResult()
        if not profiles:
            logger.warning("broadcast_no_recipients")
            return result

        logger.info("broadcast_started", recipients=len(profiles), preview=text[:50])
        for index, profile in enumerate(profiles):
            if index:
                await asyncio.sleep(self.pacing_seconds)

            try:
                outcome = await self.attempt.send(profile.recipient_id, text)
                error = None if isinstance(outcome, Delivered) else outcome.cause
            except Exception as e:
                error = str(e) or type(e).__name__

            if error is None:
                result.sent += 1
            else:
                result.failed += 1
                if len(result.failures) < self.failure_sample:
                    result.failures.append(f"{profile.recipient_id}: {error}")
                logger.warning("broadcast_send_failed", recipient_id=profile.recipient_id, error=error)

            if self.session_factory is not None:
                await record_delivery(
                    self.session_factory,
                    recipient_id=profile.recipient_id,
                    kind="broadcast",
                    success=error is None,
                    error=error,
                )

            done = index + 1
            if done % _PROGRESS_EVERY == 0:
                logger.info("broadcast_progress", done=done, total=len(profiles))

        logger.info("broadcast_complete", sent=result.sent, failed=result.failed)
        return result
