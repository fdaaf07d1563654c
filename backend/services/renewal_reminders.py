"""Daily scan for active subscriptions renewing in a fixed number of days."""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from core.domain.subscription import utcnow
from core.interfaces.repositories import SubscriptionRepository
from core.plans import plan_amount_dollars
from services.notification_dispatcher import NotificationDispatcher, NotificationKind

logger = logging.getLogger(__name__)


@dataclass
class ReminderReport:
    window_start: datetime
    window_end: datetime
    due: int = 0
    sent: int = 0

    def to_dict(self) -> dict:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "due": self.due,
            "sent": self.sent,
        }


def reminder_window(now: datetime, days_ahead: int) -> tuple[datetime, datetime]:
    """The UTC calendar day that is *days_ahead* days after *now*."""
    target = (now + timedelta(days=days_ahead)).date()
    start = datetime.combine(target, time.min, tzinfo=now.tzinfo)
    return start, start + timedelta(days=1)


class RenewalReminderScanner:
    """Sends one reminder per billing period ahead of each renewal."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        dispatcher: NotificationDispatcher,
        days_ahead: int = 7,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._days_ahead = days_ahead

    async def scan(self, now: datetime | None = None) -> ReminderReport:
        now = now or utcnow()
        start, end = reminder_window(now, self._days_ahead)
        report = ReminderReport(window_start=start, window_end=end)

        due = await self._repository.list_due_for_renewal_reminder(start, end)
        report.due = len(due)
        for record in due:
            # Marked first: a crash after this point loses the reminder rather than doubling it
            if not await self._repository.mark_renewal_reminder_sent(record.id, record.end_date):
                continue
            self._dispatcher.dispatch(
                NotificationKind.RENEWAL_REMINDER,
                record.user_id,
                plan=record.plan_type.value,
                renewal_date=record.end_date,
                amount=plan_amount_dollars(record.plan_type),
            )
            report.sent += 1

        logger.info(
            f"Renewal reminders: {report.sent} of {report.due} sent for {start:%Y-%m-%d}",
            extra={"task": "renewal_reminders"},
        )
        return report
