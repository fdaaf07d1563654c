"""
User-facing subscription operations.

Every operation returns either its result or a ``BillingError``; the API
layer decides how to present errors.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from core.domain.events import CancelRequested, CheckoutCompleted, StartTrial
from core.domain.lifecycle import transition
from core.domain.subscription import (
    NO_SUBSCRIPTION,
    PlanType,
    SubscriptionRecord,
    SubscriptionStatus,
    UserBillingProjection,
    utcnow,
)
from core.errors import (
    BillingError,
    ErrorKind,
    external_service_error,
    not_found,
    transition_error,
    validation_error,
)
from core.interfaces.repositories import SubscriptionRepository
from core.interfaces.services import (
    CheckoutSessionResult,
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorNotFoundError,
)
from core.plans import parse_plan, plan_for_price_id
from infrastructure.config.settings import Settings, get_settings
from services.subscription_lifecycle import ApplyOutcome, SubscriptionLifecycle

logger = logging.getLogger(__name__)


@dataclass
class BillingStatus:
    """A user's billing projection plus derived entitlement."""

    user_id: str
    status: str
    plan_type: PlanType | None
    current_record: SubscriptionRecord | None
    trial_start_date: datetime | None
    trial_end_date: datetime | None
    trial_used: bool
    days_remaining: int
    has_premium_access: bool
    has_trial_access: bool
    access_ends_at: datetime | None
    payment_at_risk: bool
    history_count: int

    @classmethod
    def from_projection(cls, projection: UserBillingProjection, now: datetime) -> "BillingStatus":
        record = projection.current_record
        return cls(
            user_id=projection.user_id,
            status=projection.subscription_status or NO_SUBSCRIPTION,
            plan_type=record.plan_type if record else None,
            current_record=record,
            trial_start_date=projection.trial_start_date,
            trial_end_date=projection.trial_end_date,
            trial_used=projection.trial_used,
            days_remaining=projection.days_remaining(now),
            has_premium_access=record.has_premium_access(now) if record else False,
            has_trial_access=record.has_trial_access(now) if record else False,
            access_ends_at=record.access_ends_at() if record else None,
            payment_at_risk=record.payment_at_risk if record else False,
            history_count=len(projection.subscription_history),
        )


class SubscriptionService:
    """Trial, checkout, cancellation and status operations for one user at a time."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        processor: PaymentProcessor,
        lifecycle: SubscriptionLifecycle,
        settings: Settings | None = None,
    ):
        self._repository = repository
        self._processor = processor
        self._lifecycle = lifecycle
        self._settings = settings or get_settings()

    async def _projection(self, user_id: str) -> UserBillingProjection | BillingError:
        projection = await self._repository.get_projection_by_user_id(user_id)
        if projection is None:
            return not_found(f"User {user_id} not found")
        return projection

    async def start_trial(
        self, user_id: str, now: datetime | None = None
    ) -> SubscriptionRecord | BillingError:
        """
        Start the user's one-time free trial.

        Calling this again while the same trial is running returns that trial.
        """
        now = now or utcnow()
        projection = await self._projection(user_id)
        if isinstance(projection, BillingError):
            return projection

        current = projection.current_record
        if (
            current is not None
            and current.status == SubscriptionStatus.TRIAL
            and current.has_trial_access(now)
        ):
            return current
        if projection.trial_used:
            logger.info("Trial refused, already used", extra={"user_id": user_id})
            return BillingError(
                ErrorKind.TRIAL_ALREADY_USED,
                "Free trial has already been used. Please choose a plan.",
                user_id,
            )
        if current is not None:
            return transition_error(
                f"Cannot start a trial with a {current.status.value} subscription", current.id
            )

        result = await self._lifecycle.create(
            StartTrial(user_id=user_id, trial_days=self._settings.trial_period_days, now=now),
            projection.current_subscription_id,
        )
        if result.applied:
            return result.record
        if result.outcome == ApplyOutcome.CONFLICT:
            # Lost a race with another request for this user; report what won
            latest = await self._repository.get_projection_by_user_id(user_id)
            winner = latest.current_record if latest else None
            if winner is not None and winner.status == SubscriptionStatus.TRIAL:
                return winner
            if latest and latest.trial_used:
                return BillingError(
                    ErrorKind.TRIAL_ALREADY_USED, "Free trial has already been used.", user_id
                )
            return transition_error("Subscription was modified concurrently, try again")
        return result.error or transition_error("Could not start trial")

    async def create_checkout_session(
        self, user_id: str, plan: str
    ) -> CheckoutSessionResult | BillingError:
        plan_type = parse_plan(plan)
        if plan_type is None:
            return validation_error(f"Invalid plan type: {plan}")
        price_id = self._settings.stripe_price_ids.get(plan_type)
        if not price_id:
            return validation_error(f"Plan {plan_type.value} is not available for purchase")

        projection = await self._projection(user_id)
        if isinstance(projection, BillingError):
            return projection
        current = projection.current_record
        if current is not None and current.status == SubscriptionStatus.ACTIVE:
            return transition_error("You already have an active subscription", current.id)

        try:
            customer_ref = projection.external_customer_ref
            if not customer_ref:
                contact = await self._repository.get_contact(user_id)
                if contact is None:
                    return not_found(f"User {user_id} not found")
                customer_ref = await self._processor.create_customer(
                    contact.email, contact.name, user_id
                )
                await self._repository.set_customer_ref(user_id, customer_ref)

            frontend = self._settings.frontend_url.rstrip("/")
            session = await self._processor.create_checkout_session(
                customer_ref=customer_ref,
                price_id=price_id,
                success_url=(
                    f"{frontend}/subscription/success?plan={plan_type.value}"
                    "&session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{frontend}/subscription/cancel",
                metadata={"user_id": user_id, "plan": plan_type.value},
            )
        except PaymentProcessorError as e:
            logger.error(f"Checkout session creation failed: {e}", extra={"user_id": user_id})
            return external_service_error("Failed to create checkout session", user_id)

        logger.info(f"Created checkout session {session.session_id}", extra={"user_id": user_id})
        return session

    async def handle_checkout_success(
        self, user_id: str, session_id: str | None
    ) -> SubscriptionRecord | BillingError:
        """Apply a completed checkout when the customer returns from the hosted page."""
        if not session_id:
            return validation_error("Session ID is required")

        try:
            details = await self._processor.retrieve_checkout_session(session_id)
        except ProcessorNotFoundError:
            return not_found("Checkout session not found")
        except PaymentProcessorError as e:
            logger.error(f"Checkout session lookup failed: {e}", extra={"user_id": user_id})
            return external_service_error("Failed to verify checkout session", user_id)

        if details.metadata.get("user_id") != user_id:
            logger.warning(
                f"Checkout session {session_id} does not belong to caller",
                extra={"user_id": user_id},
            )
            return BillingError(ErrorKind.AUTHORIZATION, "Checkout session belongs to another user")
        if not details.is_complete:
            return validation_error("Payment not completed")
        if not details.subscription_ref:
            return validation_error("Checkout session has no subscription")

        try:
            subscription = await self._processor.retrieve_subscription(details.subscription_ref)
        except PaymentProcessorError as e:
            logger.error(f"Subscription lookup failed: {e}", extra={"user_id": user_id})
            return external_service_error("Failed to retrieve subscription", user_id)

        plan = plan_for_price_id(
            subscription.price_id, self._settings.stripe_price_ids
        ) or parse_plan(details.metadata.get("plan"))
        if plan is None:
            return validation_error("Could not determine plan for checkout session")

        result = await self._lifecycle.complete_checkout(
            CheckoutCompleted(
                user_id=user_id,
                plan=plan,
                external_customer_ref=subscription.customer_ref or details.customer_ref,
                external_subscription_ref=subscription.id,
                period_start=subscription.current_period_start,
                period_end=subscription.current_period_end,
            )
        )
        if result.outcome in (ApplyOutcome.APPLIED, ApplyOutcome.UNCHANGED):
            if result.record.user_id != user_id:
                return BillingError(ErrorKind.AUTHORIZATION, "Subscription belongs to another user")
            return result.record
        return result.error or transition_error("Could not activate subscription")

    async def cancel(
        self, user_id: str, reason: str | None = None
    ) -> SubscriptionRecord | BillingError:
        """Cancel at period end: the processor first, then local state."""
        projection = await self._projection(user_id)
        if isinstance(projection, BillingError):
            return projection
        current = projection.current_record
        if current is None:
            return not_found("No subscription found")

        event = CancelRequested(reason=reason)
        preview = transition(current, event)
        if isinstance(preview, BillingError):
            return preview

        if current.external_subscription_ref:
            try:
                await self._processor.cancel_subscription(current.external_subscription_ref)
            except PaymentProcessorError as e:
                logger.error(
                    f"Processor cancellation failed: {e}",
                    extra={"user_id": user_id, "record_id": current.id},
                )
                return external_service_error("Failed to cancel subscription", current.id)

        result = await self._lifecycle.apply(current, event)
        if result.applied:
            return result.record
        if result.outcome == ApplyOutcome.CONFLICT:
            return transition_error("Subscription was modified concurrently, try again", current.id)
        return result.error or transition_error("Could not cancel subscription", current.id)

    async def get_status(
        self, user_id: str, now: datetime | None = None
    ) -> BillingStatus | BillingError:
        projection = await self._projection(user_id)
        if isinstance(projection, BillingError):
            return projection
        return BillingStatus.from_projection(projection, now or utcnow())
