"""Subscription domain entities."""
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from uuid import uuid4


class PlanType(StrEnum):
    """Available paid plans."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class SubscriptionStatus(StrEnum):
    """Lifecycle status of a single subscription record."""
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


# Status mirrored on the user projection when no record is referenced
NO_SUBSCRIPTION = "none"

LIVE_STATUSES = frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE})
TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED})

# A user whose history holds one of these has consumed their lifetime trial
TRIAL_CONSUMING_STATUSES = frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.EXPIRED})


class PayoutStatus(StrEnum):
    """Processor-side payout status."""
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    CANCELED = "canceled"
    FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(UTC)


def days_remaining(target: datetime | None, now: datetime | None = None) -> int:
    """Whole days left until *target*, rounded up, never negative."""
    if target is None:
        return 0
    now = now or utcnow()
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / timedelta(days=1).total_seconds())


@dataclass
class SubscriptionRecord:
    """A single subscription (trial or paid) owned by one user."""

    user_id: str
    plan_type: PlanType = PlanType.MONTHLY
    status: SubscriptionStatus = SubscriptionStatus.TRIAL
    start_date: datetime = field(default_factory=utcnow)
    end_date: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid4()))

    trial_end_date: datetime | None = None
    external_customer_ref: str | None = None
    external_subscription_ref: str | None = None
    last_payment_date: datetime | None = None
    next_payment_date: datetime | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None

    # Side channel set by PaymentFailed, consumed by retry/notification logic
    payment_at_risk: bool = False
    renewal_reminder_sent_for: datetime | None = None

    # Optimistic concurrency counter, bumped by every persisted transition
    version: int = 0

    def __post_init__(self):
        if isinstance(self.plan_type, str):
            self.plan_type = PlanType(self.plan_type)
        if isinstance(self.status, str):
            self.status = SubscriptionStatus(self.status)

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def consumed_trial(self) -> bool:
        """Whether this record counts against the one-trial-per-lifetime rule."""
        return self.status in TRIAL_CONSUMING_STATUSES or self.trial_end_date is not None

    def has_premium_access(self, now: datetime | None = None) -> bool:
        """Paid access: active, or canceled but still inside the paid period."""
        now = now or utcnow()
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED):
            return False
        return now < self.end_date

    def has_trial_access(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.status == SubscriptionStatus.TRIAL:
            return self.trial_end_date is not None and now < self.trial_end_date
        return self.has_premium_access(now)

    def access_ends_at(self) -> datetime | None:
        """The date entitlement runs out for the current status."""
        if self.status == SubscriptionStatus.TRIAL:
            return self.trial_end_date
        if self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED):
            return self.end_date
        return None


@dataclass
class UserBillingProjection:
    """Denormalized per-user billing state read by entitlement checks."""

    user_id: str
    subscription_status: str = NO_SUBSCRIPTION
    trial_start_date: datetime | None = None
    trial_end_date: datetime | None = None
    current_subscription_id: str | None = None
    subscription_history: list[str] = field(default_factory=list)
    external_customer_ref: str | None = None

    # Resolved aggregates, filled by the repository
    current_record: SubscriptionRecord | None = None
    history_records: list[SubscriptionRecord] = field(default_factory=list)

    @property
    def trial_used(self) -> bool:
        if self.trial_start_date is not None:
            return True
        return any(record.consumed_trial for record in self.history_records)

    def days_remaining(self, now: datetime | None = None) -> int:
        if self.current_record is None:
            return 0
        return days_remaining(self.current_record.access_ends_at(), now)


@dataclass
class UserContact:
    """Who to notify about a user's billing events."""

    user_id: str
    email: str
    name: str


@dataclass
class PayoutRecord:
    """Reflection of a processor payout, not persisted locally."""

    id: str
    amount: int
    currency: str
    status: PayoutStatus
    created_at: datetime | None = None
    arrival_date: datetime | None = None
    description: str | None = None
    method: str | None = None
    statement_descriptor: str | None = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = PayoutStatus(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value,
            "created_at": self.created_at,
            "arrival_date": self.arrival_date,
            "description": self.description,
            "method": self.method,
            "statement_descriptor": self.statement_descriptor,
        }
