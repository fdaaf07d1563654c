"""Repository interfaces for data access."""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import StrEnum

from ..domain.subscription import SubscriptionRecord, UserBillingProjection, UserContact


class WriteOutcome(StrEnum):
    """Result of a conditional write."""

    APPLIED = "applied"
    # The stored row changed since it was read; nothing was written
    CONFLICT = "conflict"
    # The event id was already recorded; nothing was written
    DUPLICATE_EVENT = "duplicate_event"


class SubscriptionRepository(ABC):
    """Abstract store for subscription records and the per-user billing projection.

    Every mutating method is a single atomic unit: the record, the projection
    and (when an event id is given) the processed-event marker are written
    together or not at all.
    """

    @abstractmethod
    async def get_record(self, record_id: str) -> SubscriptionRecord | None:
        """Get a record by ID."""
        ...

    @abstractmethod
    async def get_record_by_external_ref(self, subscription_ref: str) -> SubscriptionRecord | None:
        """Get the record bound to a processor subscription."""
        ...

    @abstractmethod
    async def get_record_by_customer_ref(self, customer_ref: str) -> SubscriptionRecord | None:
        """Get the most recent record for a processor customer."""
        ...

    @abstractmethod
    async def get_projection_by_user_id(self, user_id: str) -> UserBillingProjection | None:
        """Get a user's projection with current and history records resolved."""
        ...

    @abstractmethod
    async def get_contact(self, user_id: str) -> UserContact | None:
        """Get the email and name to notify."""
        ...

    @abstractmethod
    async def create_record(
        self,
        record: SubscriptionRecord,
        expected_current_id: str | None,
        require_trial_unused: bool = False,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> WriteOutcome:
        """Insert *record* and make it the user's current subscription.

        Conditional on the projection still pointing at *expected_current_id*
        (and, for trials, on no trial having been started).
        """
        ...

    @abstractmethod
    async def apply_transition(
        self,
        before: SubscriptionRecord,
        after: SubscriptionRecord,
        event_id: str | None = None,
        event_type: str | None = None,
    ) -> WriteOutcome:
        """Compare-and-swap *before* for *after* and mirror the status into the projection."""
        ...

    @abstractmethod
    async def record_processed_event(self, event_id: str, event_type: str, outcome: str) -> bool:
        """Mark an event processed. Returns False if it already was."""
        ...

    @abstractmethod
    async def is_event_processed(self, event_id: str) -> bool:
        """Check whether an event id was already recorded."""
        ...

    @abstractmethod
    async def list_expirable(self, now: datetime) -> list[SubscriptionRecord]:
        """Trials past trial_end_date, and active/canceled records past end_date."""
        ...

    @abstractmethod
    async def list_due_for_renewal_reminder(
        self, window_start: datetime, window_end: datetime
    ) -> list[SubscriptionRecord]:
        """Active records ending inside the window that were not yet reminded."""
        ...

    @abstractmethod
    async def mark_renewal_reminder_sent(self, record_id: str, end_date: datetime) -> bool:
        """Record that the reminder for *end_date* went out. False if already marked."""
        ...

    @abstractmethod
    async def list_projection_drift(self) -> list[tuple[str, str, str]]:
        """(user_id, record_id, record_status) where the projection disagrees with its record."""
        ...

    @abstractmethod
    async def repair_projection(self, user_id: str, record_id: str, status: str) -> bool:
        """Set the projection status for *user_id* if it still references *record_id*
        and that record still holds *status*."""
        ...

    @abstractmethod
    async def set_customer_ref(self, user_id: str, customer_ref: str) -> None:
        """Store the processor customer reference on the projection."""
        ...
