"""
Fire-and-forget dispatch of billing lifecycle notifications.

Notifications run as asyncio tasks on the current event loop so that the
caller (typically the webhook ack path) never waits on email delivery.
Delivery is at most once: failures are logged and counted, never retried.

Usage::

    dispatcher.dispatch(NotificationKind.TRIAL_STARTED, user_id, trial_end=record.trial_end_date)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from core.interfaces.repositories import SubscriptionRepository
from core.interfaces.services import Notifier

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    TRIAL_STARTED = "trial_started"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECEIVED = "payment_received"
    RENEWAL_REMINDER = "renewal_reminder"


# ── NotificationDispatcher class ─────────────────────────────────────────────


class NotificationDispatcher:
    """Schedules notifier calls without awaiting them."""

    def __init__(self, notifier: Notifier, repository: SubscriptionRepository) -> None:
        self._notifier = notifier
        self._repository = repository
        self._pending: set[asyncio.Task] = set()
        self._counts: dict[str, int] = {"sent": 0, "failed": 0, "skipped": 0}

    # ── Public API ────────────────────────────────────────────────────────────

    def dispatch(self, kind: NotificationKind, user_id: str, **params: Any) -> asyncio.Task:
        """
        Start delivering *kind* to *user_id* in the background.

        *params* are passed through to the notifier method after the
        recipient's email and name.
        """
        task = asyncio.create_task(
            self._deliver(kind, user_id, params), name=f"notify-{kind.value}-{user_id}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight notifications (used on shutdown and in tests)."""
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            logger.warning("notification_dispatcher: %d notifications still pending", len(pending))

    def stats(self) -> dict[str, int]:
        return {**self._counts, "pending": len(self._pending)}

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _method_for(self, kind: NotificationKind) -> Callable[..., Awaitable[bool]]:
        return {
            NotificationKind.TRIAL_STARTED: self._notifier.send_trial_started,
            NotificationKind.SUBSCRIPTION_CREATED: self._notifier.send_subscription_created,
            NotificationKind.SUBSCRIPTION_CANCELED: self._notifier.send_subscription_canceled,
            NotificationKind.PAYMENT_FAILED: self._notifier.send_payment_failed,
            NotificationKind.PAYMENT_RECEIVED: self._notifier.send_payment_received,
            NotificationKind.RENEWAL_REMINDER: self._notifier.send_renewal_reminder,
        }[kind]

    async def _deliver(self, kind: NotificationKind, user_id: str, params: dict[str, Any]) -> None:
        try:
            contact = await self._repository.get_contact(user_id)
            if contact is None:
                self._counts["skipped"] += 1
                logger.warning(
                    "notification_dispatcher: no contact for %s notification",
                    kind.value,
                    extra={"user_id": user_id},
                )
                return

            sent = await self._method_for(kind)(contact.email, contact.name, **params)
        except Exception as exc:
            self._counts["failed"] += 1
            logger.error(
                "notification_dispatcher: %s notification failed: %s",
                kind.value,
                exc,
                exc_info=True,
                extra={"user_id": user_id},
            )
            return

        if sent:
            self._counts["sent"] += 1
            logger.info(
                "notification_dispatcher: sent %s", kind.value, extra={"user_id": user_id}
            )
        else:
            self._counts["failed"] += 1
            logger.warning(
                "notification_dispatcher: %s notification was not delivered",
                kind.value,
                extra={"user_id": user_id},
            )
