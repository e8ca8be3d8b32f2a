"""Single delivery attempts and the bounded retry policy around them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

import structlog
from telegram.error import (
    BadRequest,
    ChatMigrated,
    Forbidden,
    InvalidToken,
    RetryAfter,
)

from modules.reminders.errors import ChannelMisconfigured

logger = structlog.get_logger()

# BadRequest descriptions that mean the recipient can never be reached.
_UNREACHABLE_PATTERNS = (
    "chat not found",
    "user not found",
    "user is deactivated",
    "bot was blocked",
    "bot was kicked",
    "peer_id_invalid",
    "chat_id is empty",
    "bot can't initiate conversation",
    "have no rights to send",
)


class MessageChannel(Protocol):
    async def send_message(self, recipient_id: int | str, text: str, **kwargs) -> None: ...


@dataclass
class Delivered:
    pass


@dataclass
class RetryableFailure:
    cause: str
    retry_after: float | None = None  # channel-supplied wait hint, seconds


@dataclass
class PermanentFailure:
    cause: str


AttemptResult = Delivered | RetryableFailure | PermanentFailure


@dataclass
class DeliveryOutcome:
    success: bool
    error: str | None = None
    attempts: int = 0
    permanent: bool = False


def _retry_after_seconds(exc: RetryAfter) -> float:
    value = exc.retry_after
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def classify_error(exc: BaseException) -> RetryableFailure | PermanentFailure:
    """Map a channel exception to the retry policy.

    Rate limits, timeouts and transport/5xx errors are retryable; a blocked,
    deactivated or unknown recipient is permanent; anything unrecognised is
    treated as retryable and left to the attempt budget.
    """
    cause = str(exc) or type(exc).__name__
    if isinstance(exc, RetryAfter):
        return RetryableFailure(cause, retry_after=_retry_after_seconds(exc))
    if isinstance(exc, Forbidden):
        return PermanentFailure(cause)
    if isinstance(exc, (InvalidToken, ChannelMisconfigured, ChatMigrated)):
        return PermanentFailure(cause)
    if isinstance(exc, BadRequest):
        lowered = cause.lower()
        if any(pattern in lowered for pattern in _UNREACHABLE_PATTERNS):
            return PermanentFailure(cause)
        return RetryableFailure(cause)
    # TimedOut, NetworkError (including 5xx) and unknown errors
    return RetryableFailure(cause)


class DeliveryAttempt:
    """Sends one message to one recipient and classifies the result. Never raises.

    With ``plain_text`` the channel's markup parsing is turned off, for
    operator-written text that may contain ``<`` or ``&``.
    """

    def __init__(self, channel: MessageChannel, timeout: float = 15.0, plain_text: bool = False):
        self.channel = channel
        self.timeout = timeout
        self.plain_text = plain_text

    async def send(self, recipient_id: int, text: str) -> AttemptResult:
        try:
            await asyncio.wait_for(
                self._send_message(recipient_id, text),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return RetryableFailure(f"Send timed out after {self.timeout}s")
        except Exception as e:
            return classify_error(e)
        return Delivered()

    def _send_message(self, recipient_id: int, text: str):
        if self.plain_text:
            return self.channel.send_message(recipient_id, text, parse_mode=None)
        return self.channel.send_message(recipient_id, text)


class RetryCoordinator:
    """Retries retryable failures with exponential backoff, up to ``max_attempts`` in total."""

    def __init__(
        self,
        attempt: DeliveryAttempt,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
    ):
        self.attempt = attempt
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay

    def backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the attempt following ``attempt`` (1-based): base, 2×base, 4×base..."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if retry_after:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    async def deliver(self, recipient_id: int, text: str) -> DeliveryOutcome:
        last_error: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            result = await self.attempt.send(recipient_id, text)

            if isinstance(result, Delivered):
                if attempt > 1:
                    logger.info("reminder_delivered_after_retry", recipient_id=recipient_id, attempt=attempt)
                return DeliveryOutcome(success=True, attempts=attempt)

            if isinstance(result, PermanentFailure):
                logger.warning(
                    "reminder_delivery_permanent_failure",
                    recipient_id=recipient_id,
                    attempt=attempt,
                    error=result.cause,
                )
                return DeliveryOutcome(
                    success=False, error=result.cause, attempts=attempt, permanent=True
                )

            last_error = result.cause
            if attempt < self.max_attempts:
                delay = self.backoff(attempt, result.retry_after)
                logger.warning(
                    "reminder_delivery_retrying",
                    recipient_id=recipient_id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    next_backoff_seconds=delay,
                    error=result.cause,
                )
                await asyncio.sleep(delay)

        logger.warning(
            "reminder_delivery_exhausted",
            recipient_id=recipient_id,
            attempts=self.max_attempts,
            error=last_error,
        )
        return DeliveryOutcome(success=False, error=last_error, attempts=self.max_attempts)
