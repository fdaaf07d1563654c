# Domain Entities
# Pure business objects with no external dependencies
from .events import (
    CancelRequested,
    CheckoutCompleted,
    ExternalSubscriptionDeleted,
    PaymentFailed,
    PaymentSucceeded,
    PlanChanged,
    ProcessorEventType,
    StartTrial,
    SweepExpired,
)
from .lifecycle import transition
from .subscription import (
    PayoutRecord,
    PayoutStatus,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    UserBillingProjection,
    UserContact,
)

__all__ = [
    "PlanType",
    "SubscriptionStatus",
    "SubscriptionRecord",
    "UserBillingProjection",
    "UserContact",
    "PayoutRecord",
    "PayoutStatus",
    "ProcessorEventType",
    "StartTrial",
    "CheckoutCompleted",
    "PaymentSucceeded",
    "PaymentFailed",
    "CancelRequested",
    "ExternalSubscriptionDeleted",
    "PlanChanged",
    "SweepExpired",
    "transition",
]
