"""Tests for the SQLAlchemy-backed user store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from modules.reminders.errors import StoreUnavailable
from modules.reminders.store import ReminderProfile, ReminderStore
from shared.models.user import User


def _user(**kwargs) -> User:
    defaults = dict(
        recipient_id=1001,
        first_name="Ana",
        notifications_enabled=True,
        notification_time_utc="09:00",
        utc_offset="+2",
        last_notification_sent_at=None,
        last_notification_attempt_at=None,
        last_notification_error=None,
    )
    defaults.update(kwargs)
    return User(**defaults)


class TestReminderStore:
    @pytest.mark.asyncio
    async def test_query_eligible_returns_profiles(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.scalars.return_value.all.return_value = [_user()]
        mock_db_session.execute.return_value = result

        rows = await ReminderStore(mock_session_factory).query_eligible(
            "09:00", datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        )

        assert rows == [
            ReminderProfile(
                recipient_id=1001,
                notifications_enabled=True,
                notification_time_utc="09:00",
                utc_offset="+2",
                first_name="Ana",
            )
        ]
        assert mock_db_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_unavailable(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("conn refused"))
        with pytest.raises(StoreUnavailable):
            await ReminderStore(mock_session_factory).list_all_profiles()

    @pytest.mark.asyncio
    async def test_os_error_becomes_store_unavailable(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(StoreUnavailable):
            await ReminderStore(mock_session_factory).ping()

    @pytest.mark.asyncio
    async def test_timeout_becomes_store_unavailable(self, mock_session_factory, mock_db_session):
        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_db_session.execute.side_effect = _hang
        with pytest.raises(StoreUnavailable, match="timed out"):
            await ReminderStore(mock_session_factory, timeout=0.01).count_enabled()

    @pytest.mark.asyncio
    async def test_update_rejects_settings_fields(self, mock_session_factory, mock_db_session):
        with pytest.raises(ValueError):
            await ReminderStore(mock_session_factory).update_notification_fields(
                1, notification_time_utc="10:00"
            )
        mock_db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_is_single_statement(self, mock_session_factory, mock_db_session):
        await ReminderStore(mock_session_factory).update_notification_fields(
            1, last_notification_error="blocked"
        )
        assert mock_db_session.execute.await_count == 1
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_schedule_creates_missing_profile(self, mock_session_factory, mock_db_session):
        profile = await ReminderStore(mock_session_factory).save_schedule(
            55, enabled=True, time_utc="19:00", utc_offset="+2", first_name="Bo"
        )

        created = mock_db_session.add.call_args.args[0]
        assert isinstance(created, User)
        assert created.recipient_id == 55
        assert profile.notification_time_utc == "19:00"
        assert profile.utc_offset == "+2"

    @pytest.mark.asyncio
    async def test_save_schedule_updates_existing(self, mock_session_factory, mock_db_session):
        existing = _user(recipient_id=55, notification_time_utc="08:00")
        result = MagicMock()
        result.scalar_one_or_none.return_value = existing
        mock_db_session.execute.return_value = result

        profile = await ReminderStore(mock_session_factory).save_schedule(55, enabled=False)

        assert profile.notifications_enabled is False
        # Fields not passed are left alone
        assert profile.notification_time_utc == "08:00"
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_profile_missing(self, mock_session_factory):
        assert await ReminderStore(mock_session_factory).get_profile(404) is None
