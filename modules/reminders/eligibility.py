"""Selects the users due for a reminder at a given tick."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from modules.reminders.clock import minute_of, truncate_to_minute
from modules.reminders.store import ReminderProfile, ReminderStore

logger = structlog.get_logger()


def dedup_cutoff(now: datetime, window: timedelta) -> datetime:
    """Latest ``last_notification_sent_at`` that still allows a send at ``now``.

    Computed once per tick from the minute-truncated tick time, so a send
    stored at yesterday's tick minute is exactly on the cutoff and is due again.
    """
    return truncate_to_minute(now) - window


def is_due(profile: ReminderProfile, utc_minute: str, cutoff: datetime) -> bool:
    if not profile.notifications_enabled:
        return False
    if profile.notification_time_utc != utc_minute:
        return False
    sent = profile.last_notification_sent_at
    if sent is None:
        return True
    if sent.tzinfo is None:
        sent = sent.replace(tzinfo=timezone.utc)
    return sent <= cutoff


class EligibilityQuery:
    """One store round trip per tick; rows are re-checked against ``is_due``."""

    def __init__(self, store: ReminderStore, window: timedelta = timedelta(hours=24)):
        self.store = store
        self.window = window

    async def find_due(self, now: datetime) -> list[ReminderProfile]:
        utc_minute = minute_of(now)
        cutoff = dedup_cutoff(now, self.window)

        rows = await self.store.query_eligible(utc_minute, cutoff)
        due = [p for p in rows if is_due(p, utc_minute, cutoff)]
        if len(due) != len(rows):
            logger.warning(
                "eligibility_rows_filtered",
                minute=utc_minute,
                returned=len(rows),
                due=len(due),
            )
        return due
