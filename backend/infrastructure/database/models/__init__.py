"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin, UTCDateTime
from .subscription import ProcessedWebhookEvent, Subscription
from .user import User, UserRole

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "User",
    "UserRole",
    "Subscription",
    "ProcessedWebhookEvent",
]
