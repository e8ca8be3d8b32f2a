"""User model: the notification profile fields the reminders engine reads and writes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # Telegram chat id the reminder is sent to
    recipient_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String, default=None)

    # Settings surface
    notifications_enabled: Mapped[bool] = mapped_column(default=False)
    notification_time_utc: Mapped[str | None] = mapped_column(String(5), default=None)  # "HH:MM", always UTC
    utc_offset: Mapped[str] = mapped_column(String(6), default="+0")  # "+2", "-5:30", "0"

    # Delivery bookkeeping, written only by the reminders engine
    last_notification_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_notification_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_notification_error: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
