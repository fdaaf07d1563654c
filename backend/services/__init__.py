"""
Service layer for business logic.

The ``get_*`` factories wire the process-wide instances used by the API and
the scheduler.
"""

from functools import lru_cache

from adapters.email.resend_adapter import ResendNotifier
from adapters.payments import create_stripe_adapter
from core.interfaces.services import PaymentProcessor
from infrastructure.config.settings import settings
from infrastructure.database import async_session_maker
from infrastructure.repositories import SqlAlchemySubscriptionRepository
from services.billing_scheduler import (
    BillingScheduler,
    ScheduledTask,
    every,
    next_daily_run,
    next_weekly_run,
)
from services.notification_dispatcher import NotificationDispatcher
from services.payout_scheduler import PayoutScheduler
from services.reconciliation import ReconciliationSweeper
from services.renewal_reminders import RenewalReminderScanner
from services.subscription_lifecycle import SubscriptionLifecycle
from services.subscription_service import SubscriptionService
from services.webhook_processor import WebhookProcessor


@lru_cache
def get_repository() -> SqlAlchemySubscriptionRepository:
    return SqlAlchemySubscriptionRepository(async_session_maker)


@lru_cache
def get_payment_processor() -> PaymentProcessor:
    return create_stripe_adapter()


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(ResendNotifier(), get_repository())


@lru_cache
def get_lifecycle() -> SubscriptionLifecycle:
    return SubscriptionLifecycle(get_repository(), get_notification_dispatcher())


@lru_cache
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(
        get_repository(), get_payment_processor(), get_lifecycle(), settings
    )


@lru_cache
def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor(
        get_repository(), get_payment_processor(), get_lifecycle(), settings.stripe_price_ids
    )


@lru_cache
def get_payout_scheduler() -> PayoutScheduler:
    return PayoutScheduler(
        get_payment_processor(),
        buffer_fraction=settings.payout_buffer_fraction,
        currency=settings.payout_currency,
        statement_descriptor=settings.payout_statement_descriptor,
        weekday=settings.payout_weekday,
        hour=settings.payout_hour_utc,
    )


@lru_cache
def get_billing_scheduler() -> BillingScheduler:
    """
    Get the scheduler owning the recurring billing tasks.

    Returns:
        BillingScheduler with expiry_sweep, weekly_payout and renewal_reminders
    """
    sweeper = ReconciliationSweeper(get_repository(), get_lifecycle())
    payouts = get_payout_scheduler()
    reminders = RenewalReminderScanner(
        get_repository(),
        get_notification_dispatcher(),
        days_ahead=settings.renewal_reminder_days_ahead,
    )
    return BillingScheduler(
        [
            ScheduledTask(
                "expiry_sweep", sweeper.sweep, every(settings.sweep_interval_seconds)
            ),
            ScheduledTask(
                "weekly_payout",
                payouts.run_weekly,
                lambda now: next_weekly_run(now, settings.payout_weekday, settings.payout_hour_utc),
            ),
            ScheduledTask(
                "renewal_reminders",
                reminders.scan,
                lambda now: next_daily_run(now, settings.renewal_reminder_hour_utc),
            ),
        ]
    )


__all__ = [
    "get_billing_scheduler",
    "get_lifecycle",
    "get_notification_dispatcher",
    "get_payment_processor",
    "get_payout_scheduler",
    "get_repository",
    "get_subscription_service",
    "get_webhook_processor",
]
