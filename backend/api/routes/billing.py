"""
Billing and subscription API routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from api.dependencies import (
    get_billing_scheduler,
    get_current_admin_user,
    get_current_user,
    get_subscription_service,
    get_webhook_processor,
)
from api.errors import raise_for_error, unwrap
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    CancelRequest,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSuccessRequest,
    EntitlementResponse,
    PlanInfo,
    PlansResponse,
    SubscriptionChangeResponse,
    SubscriptionRecordResponse,
    SubscriptionStatusResponse,
    TaskRunResponse,
    TrialResponse,
    WebhookResponse,
)
from core.domain.subscription import days_remaining
from core.plans import CURRENCY, PLANS
from infrastructure.config.settings import settings
from infrastructure.database.models.user import User
from services.billing_scheduler import BillingScheduler, UnknownTaskError
from services.subscription_service import SubscriptionService
from services.webhook_processor import WebhookProcessor, WebhookReject

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/plans", response_model=PlansResponse)
async def get_plans():
    """
    Get available subscription plans and pricing.

    Public endpoint - no authentication required.
    """
    plans = [
        PlanInfo(
            id=plan.value,
            name=config["name"],
            description=config["description"],
            amount=config["amount"],
            price=config["amount"] / 100,
            interval_months=config["interval_months"],
            features=config["features"],
        )
        for plan, config in PLANS.items()
    ]
    return PlansResponse(plans=plans, currency=CURRENCY, trial_days=settings.trial_period_days)


@router.post("/trial", response_model=TrialResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("billing_mutation"))
async def start_trial(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    """
    Start the one-time free trial.

    Repeating the call while the trial runs returns the same trial. A user who
    already used their trial gets 409 with code ``trial_already_used``.
    """
    record = unwrap(await service.start_trial(current_user.id))
    return TrialResponse(
        subscription=SubscriptionRecordResponse.from_record(record),
        days_remaining=days_remaining(record.trial_end_date),
        message="Free trial started",
    )


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(get_rate_limit("billing_mutation"))
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    """
    Create a hosted checkout session for a paid plan.

    Returns a checkout URL where the user can complete payment.
    """
    session = unwrap(await service.create_checkout_session(current_user.id, body.plan))
    logger.info(f"Checkout session created for plan={body.plan}", extra={"user_id": current_user.id})
    return CheckoutResponse(session_id=session.session_id, checkout_url=session.url)


@router.post("/checkout/success", response_model=SubscriptionChangeResponse)
@limiter.limit(get_rate_limit("billing_mutation"))
async def checkout_success(
    request: Request,
    body: CheckoutSuccessRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    """Activate the subscription after the customer returns from checkout."""
    record = unwrap(await service.handle_checkout_success(current_user.id, body.session_id))
    return SubscriptionChangeResponse(
        success=True,
        message="Subscription activated",
        subscription=SubscriptionRecordResponse.from_record(record),
    )


@router.post("/cancel", response_model=SubscriptionChangeResponse)
@limiter.limit(get_rate_limit("billing_mutation"))
async def cancel_subscription(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
    body: CancelRequest | None = None,
):
    """
    Cancel current subscription.

    The subscription will remain active until the end of the billing period.
    """
    record = unwrap(await service.cancel(current_user.id, body.reason if body else None))
    return SubscriptionChangeResponse(
        success=True,
        message="Subscription will be canceled at the end of the billing period.",
        subscription=SubscriptionRecordResponse.from_record(record),
    )


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    """Get current user's subscription status and days remaining."""
    billing_status = unwrap(await service.get_status(current_user.id))
    return SubscriptionStatusResponse.from_status(billing_status)


@router.get("/entitlement", response_model=EntitlementResponse)
async def get_entitlement(
    current_user: Annotated[User, Depends(get_current_user)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
):
    billing_status = unwrap(await service.get_status(current_user.id))
    return EntitlementResponse(
        has_premium_access=billing_status.has_premium_access,
        has_trial_access=billing_status.has_trial_access,
        access_ends_at=billing_status.access_ends_at,
        days_remaining=billing_status.days_remaining,
    )


@router.post("/webhook", response_model=WebhookResponse)
@limiter.exempt
async def handle_webhook(
    request: Request,
    processor: Annotated[WebhookProcessor, Depends(get_webhook_processor)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
):
    """
    Handle payment processor webhook events.

    Responds 200 for every accepted delivery, including duplicates and events
    that do not apply; 400 for a bad signature or malformed payload.
    """
    # Get raw body for signature verification
    body = await request.body()

    result = await processor.process(body, stripe_signature)
    if isinstance(result, WebhookReject):
        raise_for_error(result.error)
    return WebhookResponse(event_id=result.event_id, outcome=result.outcome)


@router.post("/admin/tasks/{name}", response_model=TaskRunResponse)
async def run_billing_task(
    name: str,
    admin_user: Annotated[User, Depends(get_current_admin_user)],
    scheduler: Annotated[BillingScheduler, Depends(get_billing_scheduler)],
):
    """Run a scheduled billing task now (expiry_sweep, weekly_payout, renewal_reminders)."""
    try:
        result = await scheduler.run_task(name)
    except UnknownTaskError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown task {name}; expected one of {', '.join(scheduler.task_names)}",
        )

    logger.info(f"Task {name} run on demand", extra={"task": name, "user_id": admin_user.id})
    return TaskRunResponse(task=name, result=result.to_dict() if result is not None else None)
