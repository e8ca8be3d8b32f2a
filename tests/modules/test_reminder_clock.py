"""Tests for UTC offset parsing and local/UTC time-of-day conversion."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from modules.reminders.clock import (
    format_local_time,
    format_offset,
    from_utc,
    is_valid_offset,
    is_valid_time,
    minute_of,
    normalize_offset,
    normalize_time,
    offset_minutes,
    parse_offset,
    to_utc,
    truncate_to_minute,
)
from modules.reminders.errors import InvalidOffset, InvalidTimeFormat


class TestParseOffset:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0", 0),
            ("+0", 0),
            ("-0", 0),
            ("+2", 120),
            ("-5", -300),
            ("+5:30", 330),
            ("-3:45", -225),
            ("+14", 840),
            ("-12", -720),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_offset(value) == expected

    @pytest.mark.parametrize("value", ["+15", "-13", "+5:20", "abc", "", "5:30:00", "+2:5"])
    def test_invalid(self, value):
        with pytest.raises(InvalidOffset):
            parse_offset(value)

    def test_invalid_offset_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_offset("nope")

    def test_is_valid_offset(self):
        assert is_valid_offset("+9:30")
        assert not is_valid_offset("+9:10")

    def test_lenient_offset_falls_back_to_utc(self):
        assert offset_minutes("garbage") == 0
        assert offset_minutes(None) == 0
        assert offset_minutes("-4") == -240


class TestNormalize:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("UTC+05:30", "+5:30"),
            ("3", "+3"),
            ("-0", "+0"),
            ("", "+0"),
            (" +02:00 ", "+2"),
        ],
    )
    def test_normalize_offset(self, value, expected):
        assert normalize_offset(value) == expected

    def test_normalize_offset_rejects_out_of_range(self):
        with pytest.raises(InvalidOffset):
            normalize_offset("UTC+20")

    def test_format_offset(self):
        assert format_offset(0) == "+0"
        assert format_offset(-330) == "-5:30"
        assert format_offset(540) == "+9"

    def test_normalize_time_pads_hours(self):
        assert normalize_time("7:05") == "07:05"

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "1230", "", None])
    def test_normalize_time_rejects(self, value):
        with pytest.raises(InvalidTimeFormat):
            normalize_time(value)

    def test_is_valid_time_requires_stored_form(self):
        assert is_valid_time("00:00")
        assert is_valid_time("23:59")
        assert not is_valid_time("7:05")
        assert not is_valid_time("24:00")


class TestConversion:
    @pytest.mark.parametrize(
        "func,time,offset,expected",
        [
            (to_utc, "23:30", "+2", "21:30"),
            (to_utc, "00:10", "-5", "05:10"),
            (from_utc, "21:30", "+2", "23:30"),
        ],
    )
    def test_boundaries(self, func, time, offset, expected):
        assert func(time, offset) == expected

    def test_to_utc_subtracts_offset(self):
        assert to_utc("21:00", "+2") == "19:00"

    def test_wraps_past_midnight(self):
        assert to_utc("23:50", "-5") == "04:50"
        assert to_utc("00:30", "+3") == "21:30"

    def test_half_hour_offset(self):
        assert to_utc("09:00", "+5:30") == "03:30"
        assert from_utc("03:30", "+5:30") == "09:00"

    def test_invalid_offset_converts_as_utc(self):
        assert to_utc("08:15", "nonsense") == "08:15"

    @pytest.mark.parametrize("offset", ["+0", "+2", "-5", "+5:30", "-3:45", "+14", "-12"])
    @pytest.mark.parametrize("local", ["00:00", "06:45", "12:00", "23:59"])
    def test_round_trip(self, local, offset):
        assert from_utc(to_utc(local, offset), offset) == local

    def test_format_local_time(self):
        assert format_local_time("21:00", "+2") == "21:00 (UTC+2)"
        assert format_local_time("21:00", "-5:30") == "21:00 (UTC-5:30)"
        assert format_local_time("21:00", "0") == "21:00 (UTC)"
        assert format_local_time("21:00", "bad") == "21:00 (UTC)"


class TestTickHelpers:
    def test_truncate_drops_seconds(self):
        now = datetime(2026, 3, 1, 9, 0, 59, 999_000, tzinfo=timezone.utc)
        assert truncate_to_minute(now) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_truncate_normalizes_to_utc(self):
        now = datetime(2026, 3, 1, 11, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        assert truncate_to_minute(now) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def test_naive_datetime_is_treated_as_utc(self):
        assert minute_of(datetime(2026, 3, 1, 17, 42, 10)) == "17:42"
