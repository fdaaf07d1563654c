"""
Unit tests for renewal reminder scanning.
"""

from datetime import UTC, datetime, timedelta

import pytest

from core.domain.events import CheckoutCompleted, PaymentSucceeded
from core.domain.subscription import PlanType
from services.renewal_reminders import reminder_window

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


async def _activate(lifecycle, user_id, period_end, ref="sub_1", plan=PlanType.MONTHLY):
    result = await lifecycle.complete_checkout(
        CheckoutCompleted(
            user_id=user_id,
            plan=plan,
            external_customer_ref=f"cus_{ref}",
            external_subscription_ref=ref,
            period_start=period_end - timedelta(days=30),
            period_end=period_end,
            now=NOW,
        )
    )
    assert result.applied
    return result.record


def test_reminder_window_is_one_utc_day():
    start, end = reminder_window(NOW, 7)

    assert start == datetime(2026, 3, 9, tzinfo=UTC)
    assert end == datetime(2026, 3, 10, tzinfo=UTC)


class TestRenewalReminderScanner:
    @pytest.mark.asyncio
    async def test_reminds_subscriptions_renewing_in_window(
        self, reminder_scanner, lifecycle, dispatcher, notifier, test_user, other_user
    ):
        due = await _activate(lifecycle, test_user.id, datetime(2026, 3, 9, 15, tzinfo=UTC))
        await _activate(
            lifecycle, other_user.id, datetime(2026, 3, 20, tzinfo=UTC), ref="sub_2"
        )

        report = await reminder_scanner.scan(now=NOW)
        await dispatcher.drain()

        reminders = notifier.of_kind("renewal_reminder")
        assert report.due == 1
        assert report.sent == 1
        assert len(reminders) == 1
        assert reminders[0]["to_email"] == "student@example.com"
        assert reminders[0]["renewal_date"] == due.end_date
        assert reminders[0]["amount"] == 20.0
        assert reminders[0]["plan"] == "monthly"

    @pytest.mark.asyncio
    async def test_one_reminder_per_period(
        self, reminder_scanner, lifecycle, dispatcher, notifier, test_user
    ):
        await _activate(lifecycle, test_user.id, datetime(2026, 3, 9, 15, tzinfo=UTC))

        await reminder_scanner.scan(now=NOW)
        second = await reminder_scanner.scan(now=NOW + timedelta(hours=2))
        await dispatcher.drain()

        assert second.due == 0
        assert len(notifier.of_kind("renewal_reminder")) == 1

    @pytest.mark.asyncio
    async def test_renewed_period_is_reminded_again(
        self, reminder_scanner, lifecycle, repository, dispatcher, notifier, test_user
    ):
        record = await _activate(lifecycle, test_user.id, datetime(2026, 3, 9, 15, tzinfo=UTC))
        await reminder_scanner.scan(now=NOW)

        stored = await repository.get_record(record.id)
        renewed_end = datetime(2026, 4, 9, 15, tzinfo=UTC)
        await lifecycle.apply(stored, PaymentSucceeded(period_end=renewed_end, now=NOW))
        report = await reminder_scanner.scan(now=datetime(2026, 4, 2, 8, tzinfo=UTC))
        await dispatcher.drain()

        assert report.sent == 1
        assert len(notifier.of_kind("renewal_reminder")) == 2

    @pytest.mark.asyncio
    async def test_canceled_subscriptions_are_not_reminded(
        self, reminder_scanner, lifecycle, subscription_service, processor, test_user
    ):
        end = datetime(2026, 3, 9, 15, tzinfo=UTC)
        processor.add_subscription("sub_1", "cus_sub_1", "price_monthly_test", end - timedelta(days=30), end)
        await _activate(lifecycle, test_user.id, end)
        await subscription_service.cancel(test_user.id)

        report = await reminder_scanner.scan(now=NOW)

        assert report.due == 0
