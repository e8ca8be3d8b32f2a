"""User-store contract for the reminders engine, backed by async SQLAlchemy.

Every method is a single round trip with a timeout.  Connectivity problems,
driver errors and timeouts all surface as ``StoreUnavailable``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.reminders.errors import StoreUnavailable
from shared.models.user import User

logger = structlog.get_logger()

# Only these columns may be written by the engine's bookkeeping.
NOTIFICATION_FIELDS = (
    "last_notification_sent_at",
    "last_notification_attempt_at",
    "last_notification_error",
)


@dataclass
class ReminderProfile:
    """Detached snapshot of the notification fields of one user."""

    recipient_id: int
    notifications_enabled: bool = False
    notification_time_utc: str | None = None
    utc_offset: str = "+0"
    first_name: str | None = None
    last_notification_sent_at: datetime | None = None
    last_notification_attempt_at: datetime | None = None
    last_notification_error: str | None = None

    @classmethod
    def from_user(cls, user: User) -> ReminderProfile:
        return cls(
            recipient_id=user.recipient_id,
            notifications_enabled=bool(user.notifications_enabled),
            notification_time_utc=user.notification_time_utc,
            utc_offset=user.utc_offset or "+0",
            first_name=user.first_name,
            last_notification_sent_at=user.last_notification_sent_at,
            last_notification_attempt_at=user.last_notification_attempt_at,
            last_notification_error=user.last_notification_error,
        )


class ReminderStore:
    """Reads and writes the notification fields of the ``users`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
    ):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, operation: str, fn) -> Any:
        """Run ``fn(session)`` in a fresh session, translating failures to StoreUnavailable."""

        async def _with_session():
            async with self.session_factory() as session:
                return await fn(session)

        try:
            return await asyncio.wait_for(_with_session(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"{operation} timed out after {self.timeout}s") from e
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def query_eligible(self, utc_minute: str, sent_before: datetime) -> list[ReminderProfile]:
        """Enabled users whose UTC time is ``utc_minute`` and who were not sent since ``sent_before``."""

        async def _query(session: AsyncSession):
            result = await session.execute(
                select(User).where(
                    User.notifications_enabled.is_(True),
                    User.notification_time_utc == utc_minute,
                    or_(
                        User.last_notification_sent_at.is_(None),
                        User.last_notification_sent_at <= sent_before,
                    ),
                )
            )
            return [ReminderProfile.from_user(u) for u in result.scalars().all()]

        return await self._run("query_eligible", _query)

    async def update_notification_fields(self, recipient_id: int, **fields: Any) -> None:
        """Atomic update-by-id of the engine's bookkeeping columns."""
        unknown = set(fields) - set(NOTIFICATION_FIELDS)
        if unknown:
            raise ValueError(f"Not a notification field: {sorted(unknown)}")
        if not fields:
            return

        async def _update(session: AsyncSession):
            await session.execute(
                update(User).where(User.recipient_id == recipient_id).values(**fields)
            )
            await session.commit()

        await self._run("update_notification_fields", _update)

    async def list_all_profiles(self) -> list[ReminderProfile]:
        async def _query(session: AsyncSession):
            result = await session.execute(select(User).order_by(User.created_at))
            return [ReminderProfile.from_user(u) for u in result.scalars().all()]

        return await self._run("list_all_profiles", _query)

    async def count_enabled(self) -> int:
        async def _query(session: AsyncSession):
            result = await session.execute(
                select(func.count()).select_from(User).where(User.notifications_enabled.is_(True))
            )
            return int(result.scalar_one())

        return await self._run("count_enabled", _query)

    async def list_failing(self, limit: int = 20) -> list[ReminderProfile]:
        """Users whose most recent delivery ended in a terminal failure."""

        async def _query(session: AsyncSession):
            result = await session.execute(
                select(User)
                .where(User.last_notification_error.is_not(None))
                .order_by(User.last_notification_attempt_at.desc())
                .limit(limit)
            )
            return [ReminderProfile.from_user(u) for u in result.scalars().all()]

        return await self._run("list_failing", _query)

    async def get_profile(self, recipient_id: int) -> ReminderProfile | None:
        async def _query(session: AsyncSession):
            result = await session.execute(select(User).where(User.recipient_id == recipient_id))
            user = result.scalar_one_or_none()
            return ReminderProfile.from_user(user) if user else None

        return await self._run("get_profile", _query)

    async def save_schedule(
        self,
        recipient_id: int,
        *,
        enabled: bool,
        time_utc: str | None = None,
        utc_offset: str | None = None,
        first_name: str | None = None,
    ) -> ReminderProfile:
        """Write the settings fields, creating the profile on first use."""
        values: dict[str, Any] = {"notifications_enabled": enabled}
        if time_utc is not None:
            values["notification_time_utc"] = time_utc
        if utc_offset is not None:
            values["utc_offset"] = utc_offset
        if first_name is not None:
            values["first_name"] = first_name

        async def _save(session: AsyncSession):
            result = await session.execute(select(User).where(User.recipient_id == recipient_id))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(recipient_id=recipient_id, **values)
                session.add(user)
                logger.info("reminder_profile_created", recipient_id=recipient_id)
            else:
                for key, value in values.items():
                    setattr(user, key, value)
            await session.commit()
            return ReminderProfile.from_user(user)

        return await self._run("save_schedule", _save)

    async def ping(self) -> None:
        """Trivial read used by the health check."""

        async def _query(session: AsyncSession):
            await session.execute(select(User.id).limit(1))

        await self._run("ping", _query)
