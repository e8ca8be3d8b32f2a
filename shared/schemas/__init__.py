"""Pydantic schemas for the reminders system."""

from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    BroadcastRequest,
    BroadcastResult,
    DeliveryReport,
    FailingRecipient,
    HealthCheckResponse,
    ScheduleUpdate,
    ScheduleView,
)

__all__ = [
    "BroadcastRequest",
    "BroadcastResult",
    "DeliveryReport",
    "FailingRecipient",
    "HealthCheckResponse",
    "HealthResponse",
    "ScheduleUpdate",
    "ScheduleView",
]
