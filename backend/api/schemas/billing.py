"""
Billing and subscription request/response schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from core.domain.subscription import SubscriptionRecord
from services.subscription_service import BillingStatus


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str = Field(..., description="Plan ID (monthly, quarterly, annual)")
    name: str = Field(..., description="Display name of the plan")
    description: str
    amount: int = Field(..., description="Price per billing interval in cents")
    price: float = Field(..., description="Price per billing interval in USD")
    interval_months: int
    features: list[str] = Field(..., description="List of features included in the plan")


class PlansResponse(BaseModel):
    """Response containing all available plans."""

    plans: list[PlanInfo]
    currency: str
    trial_days: int


class SubscriptionRecordResponse(BaseModel):
    """A single subscription record."""

    id: str
    plan_type: str
    status: str
    start_date: datetime
    end_date: datetime
    trial_end_date: datetime | None = None
    last_payment_date: datetime | None = None
    next_payment_date: datetime | None = None
    canceled_at: datetime | None = None
    cancel_reason: str | None = None
    payment_at_risk: bool = False
    stripe_subscription_id: str | None = None

    @classmethod
    def from_record(cls, record: SubscriptionRecord) -> "SubscriptionRecordResponse":
        return cls(
            id=record.id,
            plan_type=record.plan_type.value,
            status=record.status.value,
            start_date=record.start_date,
            end_date=record.end_date,
            trial_end_date=record.trial_end_date,
            last_payment_date=record.last_payment_date,
            next_payment_date=record.next_payment_date,
            canceled_at=record.canceled_at,
            cancel_reason=record.cancel_reason,
            payment_at_risk=record.payment_at_risk,
            stripe_subscription_id=record.external_subscription_ref,
        )


class SubscriptionStatusResponse(BaseModel):
    """Current billing state for a user."""

    subscription_status: str = Field(
        ..., description="Subscription status (none, trial, active, canceled, expired)"
    )
    plan_type: str | None = None
    days_remaining: int = Field(..., description="Whole days of access left, rounded up")
    trial_start_date: datetime | None = None
    trial_end_date: datetime | None = None
    trial_used: bool
    has_premium_access: bool
    has_trial_access: bool
    access_ends_at: datetime | None = None
    payment_at_risk: bool = False
    subscription: SubscriptionRecordResponse | None = None

    @classmethod
    def from_status(cls, status: BillingStatus) -> "SubscriptionStatusResponse":
        return cls(
            subscription_status=status.status,
            plan_type=status.plan_type.value if status.plan_type else None,
            days_remaining=status.days_remaining,
            trial_start_date=status.trial_start_date,
            trial_end_date=status.trial_end_date,
            trial_used=status.trial_used,
            has_premium_access=status.has_premium_access,
            has_trial_access=status.has_trial_access,
            access_ends_at=status.access_ends_at,
            payment_at_risk=status.payment_at_risk,
            subscription=(
                SubscriptionRecordResponse.from_record(status.current_record)
                if status.current_record
                else None
            ),
        )


class EntitlementResponse(BaseModel):
    has_premium_access: bool
    has_trial_access: bool
    access_ends_at: datetime | None = None
    days_remaining: int


class TrialResponse(BaseModel):
    """Response after starting a trial."""

    subscription: SubscriptionRecordResponse
    days_remaining: int
    message: str


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    plan: str = Field(..., description="Plan ID (monthly, quarterly, annual)")

    model_config = {"json_schema_extra": {"example": {"plan": "quarterly"}}}


class CheckoutResponse(BaseModel):
    """Response containing the hosted checkout URL."""

    session_id: str
    checkout_url: str = Field(..., description="URL to the hosted checkout page")


class CheckoutSuccessRequest(BaseModel):
    session_id: str | None = Field(None, description="Checkout session ID from the redirect")


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class SubscriptionChangeResponse(BaseModel):
    """Response after a subscription was activated or canceled."""

    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    subscription: SubscriptionRecordResponse


class WebhookResponse(BaseModel):
    received: bool = True
    event_id: str
    outcome: str


class TaskRunResponse(BaseModel):
    task: str
    result: dict | None = None
