"""
Applies lifecycle events to stored subscriptions.

This is the single write path for subscription state: it runs the pure
state machine, persists the result with a compare-and-swap, retries on a
lost race when asked to, and schedules the matching notification once a
change has actually been stored.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum

from sqlalchemy.exc import SQLAlchemyError

from core.domain.events import (
    CheckoutCompleted,
    LifecycleEvent,
    PaymentFailed,
    PaymentSucceeded,
    StartTrial,
)
from core.domain.lifecycle import transition
from core.domain.subscription import SubscriptionRecord, SubscriptionStatus
from core.errors import BillingError, external_service_error, not_found, transition_error
from core.interfaces.repositories import SubscriptionRepository, WriteOutcome
from services.notification_dispatcher import NotificationDispatcher, NotificationKind

logger = logging.getLogger(__name__)

# Estimated delay before the processor retries a failed renewal charge
PAYMENT_RETRY_DELAY = timedelta(days=3)


class ApplyOutcome(StrEnum):
    APPLIED = "applied"
    # Already reflected in storage; nothing written
    UNCHANGED = "unchanged"
    DUPLICATE_EVENT = "duplicate_event"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    record: SubscriptionRecord | None = None
    before: SubscriptionRecord | None = None
    error: BillingError | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == ApplyOutcome.APPLIED


_WRITE_TO_APPLY = {
    WriteOutcome.APPLIED: ApplyOutcome.APPLIED,
    WriteOutcome.CONFLICT: ApplyOutcome.CONFLICT,
    WriteOutcome.DUPLICATE_EVENT: ApplyOutcome.DUPLICATE_EVENT,
}


class SubscriptionLifecycle:
    """Runs transitions against the repository and fires notifications."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        dispatcher: NotificationDispatcher | None = None,
        max_attempts: int = 3,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._max_attempts = max_attempts

    async def apply(
        self,
        before: SubscriptionRecord,
        event: LifecycleEvent,
        *,
        event_id: str | None = None,
        event_type: str | None = None,
        retry_on_conflict: bool = True,
    ) -> ApplyResult:
        """
        Transition *before* with *event* and store the result.

        With ``retry_on_conflict`` a lost compare-and-swap reloads the record
        and re-evaluates the event against it; otherwise the conflict is
        returned as is.
        """
        attempts = self._max_attempts if retry_on_conflict else 1
        current = before
        for attempt in range(1, attempts + 1):
            result = transition(current, event)
            if isinstance(result, BillingError):
                return ApplyResult(
                    ApplyOutcome.REJECTED, record=current, before=current, error=result
                )

            try:
                write = await self._repository.apply_transition(
                    current, result, event_id, event_type
                )
            except SQLAlchemyError as e:
                logger.error(
                    f"Failed to store {type(event).__name__}: {e}",
                    exc_info=True,
                    extra={"record_id": current.id, "event_id": event_id},
                )
                return ApplyResult(
                    ApplyOutcome.FAILED,
                    before=current,
                    error=external_service_error("Subscription storage unavailable", current.id),
                )

            outcome = _WRITE_TO_APPLY[write]
            if outcome == ApplyOutcome.APPLIED:
                logger.info(
                    f"Applied {type(event).__name__}: "
                    f"{current.status.value} -> {result.status.value}",
                    extra={
                        "record_id": result.id,
                        "user_id": result.user_id,
                        "event_id": event_id,
                    },
                )
                self._notify(current, result, event)
                return ApplyResult(outcome, record=result, before=current)
            if outcome == ApplyOutcome.DUPLICATE_EVENT or attempt == attempts:
                return ApplyResult(outcome, record=current, before=current)

            reloaded = await self._repository.get_record(current.id)
            if reloaded is None:
                return ApplyResult(
                    ApplyOutcome.NOT_FOUND, error=not_found("Subscription not found")
                )
            current = reloaded

        return ApplyResult(ApplyOutcome.CONFLICT, record=current, before=current)

    async def create(
        self,
        event: StartTrial | CheckoutCompleted,
        expected_current_id: str | None,
        *,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> ApplyResult:
        """Create the first record of a new subscription for ``event.user_id``."""
        result = transition(None, event)
        if isinstance(result, BillingError):
            return ApplyResult(ApplyOutcome.REJECTED, error=result)

        try:
            write = await self._repository.create_record(
                result,
                expected_current_id,
                require_trial_unused=isinstance(event, StartTrial),
                event_id=event_id,
                event_type=event_type,
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to create subscription: {e}",
                exc_info=True,
                extra={"user_id": event.user_id, "event_id": event_id},
            )
            return ApplyResult(
                ApplyOutcome.FAILED,
                error=external_service_error("Subscription storage unavailable"),
            )

        outcome = _WRITE_TO_APPLY[write]
        if outcome == ApplyOutcome.APPLIED:
            logger.info(
                f"Created {result.status.value} subscription",
                extra={"record_id": result.id, "user_id": result.user_id, "event_id": event_id},
            )
            self._notify(None, result, event)
            return ApplyResult(outcome, record=result)
        return ApplyResult(outcome)

    async def complete_checkout(
        self,
        event: CheckoutCompleted,
        *,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> ApplyResult:
        """
        Activate a paid subscription, converting a running trial in place.

        Idempotent on ``external_subscription_ref``: if the processor
        subscription is already bound to a record, that record is returned
        unchanged. This is what lets the redirect handler and the webhook both
        deliver the same checkout.
        """
        for _ in range(self._max_attempts):
            existing = await self._repository.get_record_by_external_ref(
                event.external_subscription_ref
            )
            if existing is not None:
                return ApplyResult(ApplyOutcome.UNCHANGED, record=existing)

            projection = await self._repository.get_projection_by_user_id(event.user_id)
            if projection is None:
                return ApplyResult(
                    ApplyOutcome.NOT_FOUND, error=not_found(f"User {event.user_id} not found")
                )

            current = projection.current_record
            if current is not None and current.is_live:
                result = await self.apply(
                    current,
                    event,
                    event_id=event_id,
                    event_type=event_type,
                    retry_on_conflict=False,
                )
            else:
                # No live record: the paid subscription starts a new one
                result = await self.create(
                    event,
                    projection.current_subscription_id,
                    event_id=event_id,
                    event_type=event_type,
                )

            if result.outcome != ApplyOutcome.CONFLICT:
                return result

        return ApplyResult(
            ApplyOutcome.CONFLICT,
            error=transition_error("Subscription was modified concurrently, try again"),
        )

    def _notify(
        self,
        before: SubscriptionRecord | None,
        after: SubscriptionRecord,
        event: LifecycleEvent,
    ) -> None:
        if self._dispatcher is None:
            return

        before_status = before.status if before else None
        plan = after.plan_type.value

        if after.status != before_status:
            if after.status == SubscriptionStatus.TRIAL:
                self._dispatcher.dispatch(
                    NotificationKind.TRIAL_STARTED, after.user_id, trial_end=after.trial_end_date
                )
            elif after.status == SubscriptionStatus.ACTIVE:
                self._dispatcher.dispatch(
                    NotificationKind.SUBSCRIPTION_CREATED,
                    after.user_id,
                    plan=plan,
                    end_date=after.end_date,
                )
            elif after.status == SubscriptionStatus.CANCELED:
                self._dispatcher.dispatch(
                    NotificationKind.SUBSCRIPTION_CANCELED,
                    after.user_id,
                    plan=plan,
                    access_until=after.end_date,
                )
            return

        if isinstance(event, PaymentFailed):
            self._dispatcher.dispatch(
                NotificationKind.PAYMENT_FAILED,
                after.user_id,
                plan=plan,
                next_attempt=event.now + PAYMENT_RETRY_DELAY,
            )
        elif isinstance(event, PaymentSucceeded) and before and after.end_date > before.end_date:
            self._dispatcher.dispatch(
                NotificationKind.PAYMENT_RECEIVED,
                after.user_id,
                plan=plan,
                next_payment=after.end_date,
            )
