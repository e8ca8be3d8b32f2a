"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.delivery_log import DeliveryLog
from shared.models.user import User

__all__ = [
    "Base",
    "DeliveryLog",
    "User",
]
