"""UTC offset parsing and local <-> UTC time-of-day conversion.

Only the time of day is modelled, never the date: conversions wrap modulo
24 hours, so local 23:50 at -5 is 04:50 UTC.

Offsets look like ``"0"``, ``"+2"``, ``"-5"``, ``"+5:30"``, ``"-3:45"`` and
range from -12:00 to +14:00 in quarter-hour steps.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

import structlog

from modules.reminders.errors import InvalidOffset, InvalidTimeFormat

logger = structlog.get_logger()

MINUTES_PER_DAY = 24 * 60

_MIN_OFFSET_MINUTES = -12 * 60
_MAX_OFFSET_MINUTES = 14 * 60
_OFFSET_MINUTE_STEPS = (0, 15, 30, 45)

_OFFSET_RE = re.compile(r"^([+-])(\d{1,2})(?::(\d{2}))?$")
_STORED_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_INPUT_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_ZERO_OFFSETS = ("0", "+0", "-0")


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------

def parse_offset(offset: str) -> int:
    """Return the signed offset in minutes, raising InvalidOffset if malformed."""
    if not isinstance(offset, str):
        raise InvalidOffset(f"UTC offset must be a string, got {offset!r}")
    value = offset.strip()
    if value in _ZERO_OFFSETS:
        return 0
    m = _OFFSET_RE.match(value)
    if not m:
        raise InvalidOffset(f"Invalid UTC offset: {offset!r}")

    sign = -1 if m.group(1) == "-" else 1
    hours = int(m.group(2))
    minutes = int(m.group(3)) if m.group(3) is not None else 0
    if minutes not in _OFFSET_MINUTE_STEPS:
        raise InvalidOffset(f"Invalid UTC offset minutes: {offset!r}")

    total = sign * (hours * 60 + minutes)
    if not _MIN_OFFSET_MINUTES <= total <= _MAX_OFFSET_MINUTES:
        raise InvalidOffset(f"UTC offset out of range: {offset!r}")
    return total


def is_valid_offset(offset: str) -> bool:
    try:
        parse_offset(offset)
    except InvalidOffset:
        return False
    return True


def offset_minutes(offset: str | None) -> int:
    """Lenient variant of parse_offset: unset or malformed offsets count as UTC."""
    if offset is None or offset == "":
        return 0
    try:
        return parse_offset(offset)
    except InvalidOffset:
        logger.warning("invalid_utc_offset", offset=offset, fallback="+0")
        return 0


def format_offset(total_minutes: int) -> str:
    """Canonical offset string: ``+0``, ``+2``, ``-5:30``."""
    if total_minutes == 0:
        return "+0"
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    if minutes:
        return f"{sign}{hours}:{minutes:02d}"
    return f"{sign}{hours}"


def normalize_offset(value: str) -> str:
    """Canonicalize user-entered offsets such as ``"UTC+05:30"`` or ``"3"``.

    Raises InvalidOffset when the value cannot be made valid.
    """
    text = (value or "").strip()
    if text.upper().startswith("UTC"):
        text = text[3:].strip()
    if not text:
        return "+0"
    if text[0].isdigit():
        text = "+" + text
    return format_offset(parse_offset(text))


# ---------------------------------------------------------------------------
# Times of day
# ---------------------------------------------------------------------------

def is_valid_time(value: str) -> bool:
    """True for a stored-form "HH:MM" (24-hour, zero-padded)."""
    return isinstance(value, str) and bool(_STORED_TIME_RE.match(value))


def normalize_time(value: str) -> str:
    """Accept "H:MM" or "HH:MM" and return zero-padded "HH:MM"."""
    m = _INPUT_TIME_RE.match((value or "").strip()) if isinstance(value, str) else None
    if not m:
        raise InvalidTimeFormat(f"Invalid time: {value!r}, expected HH:MM")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeFormat(f"Invalid time: {value!r}, expected HH:MM")
    return f"{hours:02d}:{minutes:02d}"


def _to_minutes(value: str) -> int:
    hours, minutes = normalize_time(value).split(":")
    return int(hours) * 60 + int(minutes)


def _from_minutes(total: int) -> str:
    hours, minutes = divmod(total % MINUTES_PER_DAY, 60)
    return f"{hours:02d}:{minutes:02d}"


def to_utc(local_time: str, offset: str | None) -> str:
    """Convert a local "HH:MM" to UTC by subtracting the offset."""
    return _from_minutes(_to_minutes(local_time) - offset_minutes(offset))


def from_utc(utc_time: str, offset: str | None) -> str:
    """Convert a UTC "HH:MM" to local time by adding the offset."""
    return _from_minutes(_to_minutes(utc_time) + offset_minutes(offset))


def format_local_time(local_time: str, offset: str | None) -> str:
    """Render ``"21:00 (UTC+2)"``; a zero or unusable offset renders as ``"(UTC)"``."""
    total = offset_minutes(offset)
    if total == 0:
        return f"{local_time} (UTC)"
    return f"{local_time} (UTC{format_offset(total)})"


# ---------------------------------------------------------------------------
# Tick helpers
# ---------------------------------------------------------------------------

def truncate_to_minute(now: datetime) -> datetime:
    """UTC-normalize and drop seconds so every write in one tick shares a timestamp."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).replace(second=0, microsecond=0)


def minute_of(now: datetime) -> str:
    """The UTC "HH:MM" a tick at ``now`` is responsible for."""
    return truncate_to_minute(now).strftime("%H:%M")
