"""
Subscription lifecycle state machine.

``transition`` is a pure function: it never mutates the record it is given and
never touches storage. It returns either the new record or a
``TransitionError`` describing why the event does not apply. Persisting the
result (atomically, against the version that was read) is the caller's job.

Legal status moves::

    none   -> trial     (StartTrial)
    none   -> active    (CheckoutCompleted)
    trial  -> active    (CheckoutCompleted)
    trial  -> expired   (SweepExpired, once trial_end_date has passed)
    active -> canceled  (CancelRequested, ExternalSubscriptionDeleted)
    active -> expired   (SweepExpired, once end_date has passed)
    canceled -> expired (SweepExpired, once end_date has passed)

canceled and expired are terminal for the record.
"""

from collections.abc import Callable
from dataclasses import replace
from datetime import timedelta

from core.errors import TransitionError, transition_error

from .events import (
    CancelRequested,
    CheckoutCompleted,
    ExternalSubscriptionDeleted,
    LifecycleEvent,
    PaymentFailed,
    PaymentSucceeded,
    PlanChanged,
    StartTrial,
    SweepExpired,
)
from .subscription import PlanType, SubscriptionRecord, SubscriptionStatus

TransitionResult = SubscriptionRecord | TransitionError


def _state_name(record: SubscriptionRecord | None) -> str:
    return "none" if record is None else record.status.value


def _reject(record: SubscriptionRecord | None, event: LifecycleEvent) -> TransitionError:
    return transition_error(
        f"{type(event).__name__} is not applicable to a subscription in state "
        f"'{_state_name(record)}'",
        correlation_id=record.id if record else None,
    )


def _start_trial(record: SubscriptionRecord | None, event: StartTrial) -> TransitionResult:
    if record is not None:
        return _reject(record, event)
    trial_end = event.now + timedelta(days=event.trial_days)
    return SubscriptionRecord(
        user_id=event.user_id,
        plan_type=PlanType.MONTHLY,
        status=SubscriptionStatus.TRIAL,
        start_date=event.now,
        end_date=trial_end,
        trial_end_date=trial_end,
    )


def _checkout_completed(
    record: SubscriptionRecord | None, event: CheckoutCompleted
) -> TransitionResult:
    if record is None:
        return SubscriptionRecord(
            user_id=event.user_id,
            plan_type=event.plan,
            status=SubscriptionStatus.ACTIVE,
            start_date=event.period_start,
            end_date=event.period_end,
            external_customer_ref=event.external_customer_ref,
            external_subscription_ref=event.external_subscription_ref,
            last_payment_date=event.now,
            next_payment_date=event.period_end,
        )
    if record.status != SubscriptionStatus.TRIAL or record.user_id != event.user_id:
        return _reject(record, event)
    # Trial converts in place; trial_end_date is kept as history
    return replace(
        record,
        plan_type=event.plan,
        status=SubscriptionStatus.ACTIVE,
        start_date=event.period_start,
        end_date=event.period_end,
        external_customer_ref=event.external_customer_ref,
        external_subscription_ref=event.external_subscription_ref,
        last_payment_date=event.now,
        next_payment_date=event.period_end,
        payment_at_risk=False,
    )


def _payment_succeeded(
    record: SubscriptionRecord | None, event: PaymentSucceeded
) -> TransitionResult:
    if record is None or record.status != SubscriptionStatus.ACTIVE:
        return _reject(record, event)
    if event.period_end <= record.end_date:
        # Stale or duplicate renewal: only the payment timestamp moves
        return replace(record, last_payment_date=event.now)
    return replace(
        record,
        end_date=event.period_end,
        next_payment_date=event.period_end,
        last_payment_date=event.now,
        payment_at_risk=False,
    )


def _payment_failed(record: SubscriptionRecord | None, event: PaymentFailed) -> TransitionResult:
    if record is None or record.status != SubscriptionStatus.ACTIVE:
        return _reject(record, event)
    return replace(record, payment_at_risk=True)


def _cancel_requested(
    record: SubscriptionRecord | None, event: CancelRequested
) -> TransitionResult:
    if record is None or record.status != SubscriptionStatus.ACTIVE:
        return _reject(record, event)
    return replace(
        record,
        status=SubscriptionStatus.CANCELED,
        canceled_at=event.now,
        cancel_reason=event.reason,
    )


def _external_subscription_deleted(
    record: SubscriptionRecord | None, event: ExternalSubscriptionDeleted
) -> TransitionResult:
    if record is None or record.status not in (
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    ):
        return _reject(record, event)
    return replace(
        record,
        status=SubscriptionStatus.CANCELED,
        canceled_at=record.canceled_at or event.now,
    )


def _plan_changed(record: SubscriptionRecord | None, event: PlanChanged) -> TransitionResult:
    if record is None or record.status not in (
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    ):
        return _reject(record, event)
    return replace(record, plan_type=event.plan)


def _sweep_expired(record: SubscriptionRecord | None, event: SweepExpired) -> TransitionResult:
    if record is None:
        return _reject(record, event)
    if record.status == SubscriptionStatus.TRIAL:
        due = record.trial_end_date
    elif record.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED):
        due = record.end_date
    else:
        return _reject(record, event)
    if due is None or event.now < due:
        return transition_error(
            f"Subscription {record.id} is not due to expire until {due}",
            correlation_id=record.id,
        )
    return replace(record, status=SubscriptionStatus.EXPIRED)


_HANDLERS: dict[type, Callable[[SubscriptionRecord | None, object], TransitionResult]] = {
    StartTrial: _start_trial,
    CheckoutCompleted: _checkout_completed,
    PaymentSucceeded: _payment_succeeded,
    PaymentFailed: _payment_failed,
    CancelRequested: _cancel_requested,
    ExternalSubscriptionDeleted: _external_subscription_deleted,
    PlanChanged: _plan_changed,
    SweepExpired: _sweep_expired,
}


def transition(record: SubscriptionRecord | None, event: LifecycleEvent) -> TransitionResult:
    """Apply *event* to *record* (``None`` meaning the user has no record)."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unsupported lifecycle event: {type(event).__name__}")
    return handler(record, event)


def is_rejection(result: TransitionResult) -> bool:
    return not isinstance(result, SubscriptionRecord)


def status_changed(before: SubscriptionRecord | None, after: SubscriptionRecord) -> bool:
    return before is None or before.status != after.status
