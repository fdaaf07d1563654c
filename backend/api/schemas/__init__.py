"""
API request and response schemas.
"""

from .billing import (
    CheckoutRequest,
    CheckoutResponse,
    PlansResponse,
    SubscriptionStatusResponse,
    WebhookResponse,
)
from .payouts import CreatePayoutRequest, PayoutResponse, PayoutScheduleResponse

__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "CreatePayoutRequest",
    "PayoutResponse",
    "PayoutScheduleResponse",
    "PlansResponse",
    "SubscriptionStatusResponse",
    "WebhookResponse",
]
