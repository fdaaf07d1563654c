"""
Unit tests for the subscription state machine.

Tests the pure transition function:
- Legal moves between none, trial, active, canceled and expired
- Rejection of every move the lifecycle does not allow
- Trial conversion keeping the trial history
- Stale renewals and payment failure flags
- Expiry only once the due date has passed
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from core.domain.events import (
    CancelRequested,
    CheckoutCompleted,
    ExternalSubscriptionDeleted,
    PaymentFailed,
    PaymentSucceeded,
    PlanChanged,
    StartTrial,
    SweepExpired,
)
from core.domain.lifecycle import is_rejection, status_changed, transition
from core.domain.subscription import PlanType, SubscriptionRecord, SubscriptionStatus
from core.errors import BillingError, ErrorKind

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def checkout(user_id: str = "user-1", plan: PlanType = PlanType.QUARTERLY, now: datetime = NOW):
    return CheckoutCompleted(
        user_id=user_id,
        plan=plan,
        external_customer_ref="cus_123",
        external_subscription_ref="sub_123",
        period_start=now,
        period_end=now + timedelta(days=90),
        now=now,
    )


@pytest.fixture
def trial() -> SubscriptionRecord:
    result = transition(None, StartTrial(user_id="user-1", trial_days=7, now=NOW))
    assert isinstance(result, SubscriptionRecord)
    return result


@pytest.fixture
def active() -> SubscriptionRecord:
    result = transition(None, checkout())
    assert isinstance(result, SubscriptionRecord)
    return result


@pytest.fixture
def canceled(active) -> SubscriptionRecord:
    return transition(active, CancelRequested(reason="too expensive", now=NOW))


@pytest.fixture
def expired(trial) -> SubscriptionRecord:
    return transition(trial, SweepExpired(now=NOW + timedelta(days=8)))


class TestStartTrial:
    """Tests for starting a free trial."""

    def test_creates_trial_from_nothing(self, trial):
        assert trial.status == SubscriptionStatus.TRIAL
        assert trial.plan_type == PlanType.MONTHLY
        assert trial.start_date == NOW
        assert trial.trial_end_date == NOW + timedelta(days=7)
        assert trial.end_date == trial.trial_end_date

    def test_trial_length_follows_event(self):
        result = transition(None, StartTrial(user_id="user-1", trial_days=14, now=NOW))
        assert result.trial_end_date == NOW + timedelta(days=14)

    @pytest.mark.parametrize("fixture_name", ["trial", "active", "canceled", "expired"])
    def test_rejected_when_a_record_exists(self, request, fixture_name):
        record = request.getfixturevalue(fixture_name)
        result = transition(record, StartTrial(user_id="user-1", now=NOW))

        assert isinstance(result, BillingError)
        assert result.kind == ErrorKind.TRANSITION
        assert result.correlation_id == record.id


class TestCheckoutCompleted:
    """Tests for paid activation."""

    def test_creates_active_record_from_nothing(self, active):
        assert active.status == SubscriptionStatus.ACTIVE
        assert active.plan_type == PlanType.QUARTERLY
        assert active.end_date == NOW + timedelta(days=90)
        assert active.next_payment_date == active.end_date
        assert active.last_payment_date == NOW
        assert active.external_subscription_ref == "sub_123"
        assert active.trial_end_date is None

    def test_converts_trial_in_place(self, trial):
        later = NOW + timedelta(days=2)
        result = transition(trial, checkout(now=later))

        assert result.id == trial.id
        assert result.status == SubscriptionStatus.ACTIVE
        assert result.plan_type == PlanType.QUARTERLY
        assert result.start_date == later
        assert result.end_date == later + timedelta(days=90)
        # Trial history survives the conversion
        assert result.trial_end_date == trial.trial_end_date
        assert result.consumed_trial

    def test_rejects_trial_of_another_user(self, trial):
        result = transition(trial, checkout(user_id="someone-else"))
        assert is_rejection(result)

    @pytest.mark.parametrize("fixture_name", ["active", "canceled", "expired"])
    def test_rejected_from_non_trial_records(self, request, fixture_name):
        record = request.getfixturevalue(fixture_name)
        assert is_rejection(transition(record, checkout()))

    def test_does_not_mutate_input(self, trial):
        snapshot = replace(trial)
        transition(trial, checkout())
        assert trial == snapshot


class TestPayments:
    """Tests for renewal success and failure."""

    def test_renewal_extends_period(self, active):
        new_end = active.end_date + timedelta(days=90)
        paid_at = NOW + timedelta(days=90)
        result = transition(active, PaymentSucceeded(period_end=new_end, now=paid_at))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.end_date == new_end
        assert result.next_payment_date == new_end
        assert result.last_payment_date == paid_at

    def test_stale_renewal_only_records_payment(self, active):
        paid_at = NOW + timedelta(hours=1)
        result = transition(active, PaymentSucceeded(period_end=active.end_date, now=paid_at))

        assert result.end_date == active.end_date
        assert result.next_payment_date == active.next_payment_date
        assert result.last_payment_date == paid_at

    def test_renewal_clears_payment_at_risk(self, active):
        at_risk = transition(active, PaymentFailed(now=NOW))
        result = transition(
            at_risk, PaymentSucceeded(period_end=active.end_date + timedelta(days=30), now=NOW)
        )
        assert result.payment_at_risk is False

    def test_payment_failed_flags_without_status_change(self, active):
        result = transition(active, PaymentFailed(now=NOW))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.payment_at_risk is True
        assert not status_changed(active, result)

    @pytest.mark.parametrize("fixture_name", ["trial", "canceled", "expired"])
    def test_payments_rejected_unless_active(self, request, fixture_name):
        record = request.getfixturevalue(fixture_name)
        assert is_rejection(transition(record, PaymentFailed(now=NOW)))
        assert is_rejection(
            transition(record, PaymentSucceeded(period_end=NOW + timedelta(days=400), now=NOW))
        )

    def test_payment_without_record_rejected(self):
        assert is_rejection(transition(None, PaymentFailed(now=NOW)))


class TestCancellation:
    """Tests for cancel requests and processor-side deletion."""

    def test_cancel_keeps_paid_period(self, active, canceled):
        assert canceled.status == SubscriptionStatus.CANCELED
        assert canceled.canceled_at == NOW
        assert canceled.cancel_reason == "too expensive"
        assert canceled.end_date == active.end_date
        assert canceled.has_premium_access(NOW + timedelta(days=1))

    @pytest.mark.parametrize("fixture_name", ["trial", "canceled", "expired"])
    def test_cancel_only_from_active(self, request, fixture_name):
        record = request.getfixturevalue(fixture_name)
        assert is_rejection(transition(record, CancelRequested(now=NOW)))

    def test_external_delete_cancels_active(self, active):
        result = transition(active, ExternalSubscriptionDeleted(now=NOW))
        assert result.status == SubscriptionStatus.CANCELED
        assert result.canceled_at == NOW

    def test_external_delete_keeps_original_cancel_time(self, canceled):
        result = transition(canceled, ExternalSubscriptionDeleted(now=NOW + timedelta(days=3)))
        assert result.canceled_at == canceled.canceled_at

    def test_external_delete_rejected_for_trial(self, trial):
        assert is_rejection(transition(trial, ExternalSubscriptionDeleted(now=NOW)))


class TestPlanChanged:
    def test_changes_plan_only(self, active):
        result = transition(active, PlanChanged(plan=PlanType.ANNUAL, now=NOW))
        assert result.plan_type == PlanType.ANNUAL
        assert result.status == active.status
        assert result.end_date == active.end_date

    def test_rejected_for_trial(self, trial):
        assert is_rejection(transition(trial, PlanChanged(plan=PlanType.ANNUAL, now=NOW)))


class TestSweepExpired:
    """Tests for expiry of overdue records."""

    def test_trial_not_expired_before_due(self, trial):
        result = transition(trial, SweepExpired(now=trial.trial_end_date - timedelta(seconds=1)))
        assert isinstance(result, BillingError)
        assert "not due" in result.message

    def test_trial_expires_after_due(self, trial):
        result = transition(trial, SweepExpired(now=trial.trial_end_date + timedelta(seconds=1)))
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.consumed_trial

    def test_active_expires_after_period(self, active):
        result = transition(active, SweepExpired(now=active.end_date + timedelta(minutes=1)))
        assert result.status == SubscriptionStatus.EXPIRED

    def test_canceled_expires_after_period(self, canceled):
        result = transition(canceled, SweepExpired(now=canceled.end_date))
        assert result.status == SubscriptionStatus.EXPIRED

    def test_expired_is_terminal(self, expired):
        assert expired.is_terminal
        assert is_rejection(transition(expired, SweepExpired(now=NOW + timedelta(days=30))))


class TestAccess:
    """Tests for entitlement helpers on records."""

    def test_trial_access_until_trial_end(self, trial):
        assert trial.has_trial_access(NOW + timedelta(days=6))
        assert not trial.has_trial_access(NOW + timedelta(days=7))
        assert not trial.has_premium_access(NOW)

    def test_expired_has_no_access(self, expired):
        assert not expired.has_trial_access(NOW)
        assert not expired.has_premium_access(NOW)
        assert expired.access_ends_at() is None

    def test_unsupported_event_raises(self, active):
        with pytest.raises(TypeError):
            transition(active, object())
