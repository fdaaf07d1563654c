"""
Lifecycle events consumed by the subscription state machine, and the
processor webhook event types they are derived from.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from .subscription import PlanType, utcnow


@dataclass(frozen=True)
class StartTrial:
    user_id: str
    trial_days: int = 7
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CheckoutCompleted:
    user_id: str
    plan: PlanType
    external_customer_ref: str
    external_subscription_ref: str
    period_start: datetime
    period_end: datetime
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PaymentSucceeded:
    period_end: datetime
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PaymentFailed:
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CancelRequested:
    reason: str | None = None
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ExternalSubscriptionDeleted:
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PlanChanged:
    plan: PlanType
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SweepExpired:
    now: datetime = field(default_factory=utcnow)


LifecycleEvent = (
    StartTrial
    | CheckoutCompleted
    | PaymentSucceeded
    | PaymentFailed
    | CancelRequested
    | ExternalSubscriptionDeleted
    | PlanChanged
    | SweepExpired
)


class ProcessorEventType(StrEnum):
    """Webhook event types the billing engine understands.

    Anything else parses to ``UNRECOGNIZED`` and is acknowledged as a no-op.
    """

    CHECKOUT_COMPLETED = "checkout.session.completed"
    PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAID = "invoice.paid"
    PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    PAYOUT_CREATED = "payout.created"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"
    PAYOUT_CANCELED = "payout.canceled"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def parse(cls, raw: str | None) -> "ProcessorEventType":
        try:
            parsed = cls(raw)
        except ValueError:
            return cls.UNRECOGNIZED
        return parsed

    @property
    def is_payout_event(self) -> bool:
        return self in (
            ProcessorEventType.PAYOUT_CREATED,
            ProcessorEventType.PAYOUT_PAID,
            ProcessorEventType.PAYOUT_FAILED,
            ProcessorEventType.PAYOUT_CANCELED,
        )
