"""Schemas exchanged between the reminders service, the bot and the CLI."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ScheduleUpdate(BaseModel):
    """A user's reminder settings as entered, in their local time."""

    enabled: bool
    local_time: str | None = None  # "HH:MM" in the user's local clock
    utc_offset: str | None = None  # "+2", "-5:30", "0"
    first_name: str | None = None


class ScheduleView(BaseModel):
    """A user's reminder settings converted back for display."""

    recipient_id: int
    enabled: bool
    local_time: str | None = None
    utc_time: str | None = None
    utc_offset: str = "+0"
    display: str | None = None  # e.g. "21:00 (UTC+2)"


class BroadcastRequest(BaseModel):
    text: str = Field(min_length=1)


class BroadcastResult(BaseModel):
    sent: int = 0
    failed: int = 0
    failures: list[str] = Field(default_factory=list)  # bounded sample of "<recipient>: <reason>"


class HealthCheckResponse(BaseModel):
    healthy: bool
    store_ok: bool
    channel_ok: bool


class FailingRecipient(BaseModel):
    recipient_id: int
    error: str
    last_attempt_at: datetime | None = None


class DeliveryReport(BaseModel):
    """Operator view of delivery health."""

    enabled_users: int
    failing: list[FailingRecipient] = Field(default_factory=list)
