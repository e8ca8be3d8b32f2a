"""Shared test fixtures for the reminders test suite.

Provides mock database sessions, Redis clients, an in-memory user store and
profile factories so tests run without Postgres, Redis or Telegram.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.errors import StoreUnavailable
from modules.reminders.store import NOTIFICATION_FIELDS, ReminderProfile


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the patterns used by the store and the delivery log:
        session.execute(stmt) -> result
        session.add(obj)
        session.commit()
    """
    session = AsyncMock()
    session.add = MagicMock()
    # Default: execute returns a result with no rows
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client; ``SET NX`` succeeds by default."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock()
    return redis


# ---------------------------------------------------------------------------
# Profiles and an in-memory store
# ---------------------------------------------------------------------------


@pytest.fixture
def make_profile():
    """Factory for ReminderProfile instances."""

    def _make(
        recipient_id: int = 1001,
        enabled: bool = True,
        time_utc: str | None = "09:00",
        utc_offset: str = "+0",
        first_name: str | None = "Ana",
        sent_at: datetime | None = None,
    ) -> ReminderProfile:
        return ReminderProfile(
            recipient_id=recipient_id,
            notifications_enabled=enabled,
            notification_time_utc=time_utc,
            utc_offset=utc_offset,
            first_name=first_name,
            last_notification_sent_at=sent_at,
        )

    return _make


class FakeStore:
    """In-memory stand-in for ReminderStore with the same method surface."""

    def __init__(self, profiles=()):
        self.profiles: dict[int, ReminderProfile] = {p.recipient_id: p for p in profiles}
        self.updates: list[tuple[int, dict]] = []
        self.query_calls = 0
        self.unavailable = False

    def _check(self):
        if self.unavailable:
            raise StoreUnavailable("store is down")

    async def query_eligible(self, utc_minute, sent_before):
        self._check()
        self.query_calls += 1
        return [
            replace(p)
            for p in self.profiles.values()
            if p.notifications_enabled
            and p.notification_time_utc == utc_minute
            and (p.last_notification_sent_at is None or p.last_notification_sent_at <= sent_before)
        ]

    async def update_notification_fields(self, recipient_id, **fields):
        self._check()
        assert set(fields) <= set(NOTIFICATION_FIELDS)
        self.updates.append((recipient_id, fields))
        profile = self.profiles[recipient_id]
        for key, value in fields.items():
            setattr(profile, key, value)

    async def list_all_profiles(self):
        self._check()
        return list(self.profiles.values())

    async def count_enabled(self):
        self._check()
        return sum(1 for p in self.profiles.values() if p.notifications_enabled)

    async def list_failing(self, limit=20):
        self._check()
        return [p for p in self.profiles.values() if p.last_notification_error][:limit]

    async def get_profile(self, recipient_id):
        self._check()
        return self.profiles.get(recipient_id)

    async def save_schedule(self, recipient_id, *, enabled, time_utc=None, utc_offset=None, first_name=None):
        self._check()
        profile = self.profiles.setdefault(recipient_id, ReminderProfile(recipient_id=recipient_id))
        profile.notifications_enabled = enabled
        if time_utc is not None:
            profile.notification_time_utc = time_utc
        if utc_offset is not None:
            profile.utc_offset = utc_offset
        if first_name is not None:
            profile.first_name = first_name
        return replace(profile)

    async def ping(self):
        self._check()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def make_store():
    """Factory for an in-memory store seeded with profiles."""

    def _make(*profiles) -> FakeStore:
        return FakeStore(profiles)

    return _make


@pytest.fixture
def mock_channel():
    """Messaging channel whose sends succeed unless configured otherwise."""
    channel = MagicMock()
    channel.send_message = AsyncMock(return_value=None)
    channel.has_credentials = MagicMock(return_value=True)
    channel.close = AsyncMock()
    return channel

