"""Error taxonomy for the reminders engine."""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for reminders engine errors."""


class StoreUnavailable(ReminderError):
    """The user store could not be reached or timed out.

    Tick-level: the scheduler skips the tick and tries again on the next one.
    """


class InvalidOffset(ReminderError, ValueError):
    """A UTC offset string that does not parse."""


class InvalidTimeFormat(ReminderError, ValueError):
    """A time-of-day string that is not "HH:MM"."""


class ChannelMisconfigured(ReminderError):
    """The messaging channel has no usable credential."""


class ProfileNotFound(ReminderError, LookupError):
    """No user profile exists for the recipient id."""
