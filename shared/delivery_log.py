"""Async helper for appending rows to the reminder_deliveries table.

Usage::

    from shared.delivery_log import record_delivery

    await record_delivery(
        session_factory,
        recipient_id=12345,
        kind="scheduled",
        success=False,
        attempts=3,
        error="Timed out",
    )

The function is wrapped in a broad try/except so it can never propagate
exceptions to the caller; a lost log row must not break delivery.
"""

from __future__ import annotations

import structlog

from shared.models.delivery_log import DeliveryLog

logger = structlog.get_logger()

# Stored errors are truncated to keep rows small.
_MAX_ERROR_CHARS = 1000


async def record_delivery(
    session_factory,
    *,
    recipient_id: int,
    kind: str,
    success: bool,
    attempts: int = 1,
    error: str | None = None,
) -> None:
    """Persist one delivery outcome. Never raises."""
    try:
        async with session_factory() as session:
            session.add(
                DeliveryLog(
                    recipient_id=recipient_id,
                    kind=kind,
                    success=success,
                    attempts=attempts,
                    error=error[:_MAX_ERROR_CHARS] if error else None,
                )
            )
            await session.commit()
    except Exception:
        logger.warning(
            "delivery_log_write_failed",
            recipient_id=recipient_id,
            kind=kind,
            exc_info=True,
        )
