"""
Subscription record and processed webhook event models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime


class Subscription(Base, TimestampMixin):
    """One trial or paid subscription. Never deleted."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    trial_end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )

    last_payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    next_payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payment_at_risk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    renewal_reminder_sent_for: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_status_end", "status", "end_date"),
        Index("ix_subscriptions_status_trial_end", "status", "trial_end_date"),
        Index("ix_subscriptions_customer", "stripe_customer_id"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Processor event ids already handled, for duplicate delivery detection."""

    __tablename__ = "processed_webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[str] = mapped_column(String(50), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, outcome={self.outcome})>"
