"""
User database model.

Only the columns the billing engine owns or reads are mapped here; the
billing projection columns are written exclusively by the subscription
repository.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import Index, String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.subscription import NO_SUBSCRIPTION

from .base import Base, TimestampMixin, UTCDateTime


class UserRole(str, Enum):
    """User roles enumeration."""

    USER = "user"
    ADMIN = "admin"


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Basic info
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(50),
        default=UserRole.USER.value,
        nullable=False,
    )

    # Billing projection
    subscription_status: Mapped[str] = mapped_column(
        String(50),
        default=NO_SUBSCRIPTION,
        nullable=False,
    )  # none, trial, active, canceled, expired
    trial_start_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    trial_end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    current_subscription_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    # Append-only list of subscription record ids, oldest first
    subscription_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )

    __table_args__ = (
        Index("ix_users_subscription_status", "subscription_status"),
        Index("ix_users_current_subscription", "current_subscription_id"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
