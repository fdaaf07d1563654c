"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..domain.subscription import PayoutRecord


# Custom Exceptions
class PaymentProcessorError(Exception):
    """Base exception for payment processor failures."""

    pass


class ProcessorTimeoutError(PaymentProcessorError):
    """Raised when a processor call times out."""

    pass


class ProcessorNotFoundError(PaymentProcessorError):
    """Raised when the processor has no such object."""

    pass


class ProcessorInvalidRequestError(PaymentProcessorError):
    """Raised when the processor rejects a request as invalid for the object's state."""

    pass


class ProcessorIdempotencyError(PaymentProcessorError):
    """Raised when an idempotency key was already used with different parameters."""

    pass


class WebhookSignatureError(PaymentProcessorError):
    """Raised when a webhook payload fails signature verification."""

    pass


class WebhookPayloadError(PaymentProcessorError):
    """Raised when a signed webhook payload cannot be decoded."""

    pass


@dataclass
class CheckoutSessionResult:
    """A processor-hosted checkout page."""

    session_id: str
    url: str


@dataclass
class CheckoutSessionDetails:
    """State of a checkout session after the customer returns."""

    session_id: str
    status: str | None
    customer_ref: str | None
    subscription_ref: str | None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"


@dataclass
class ProcessorSubscription:
    """Processor view of a recurring subscription."""

    id: str
    customer_ref: str | None
    status: str
    price_id: str | None
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False


@dataclass
class ProcessorBalance:
    """Balance amounts in the smallest currency unit, keyed by currency."""

    available: dict[str, int] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)

    def available_in(self, currency: str) -> int:
        return self.available.get(currency.lower(), 0)


@dataclass
class PayoutAccountSettings:
    """Whether payouts can run, and where they land."""

    payouts_enabled: bool
    bank_last4: str | None = None
    bank_name: str | None = None
    schedule: dict[str, Any] | None = None
    failure_message: str | None = None


class PaymentProcessor(ABC):
    """Abstract payment processor consumed by the billing engine."""

    @abstractmethod
    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        """Create a customer and return its reference."""
        ...

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_ref: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionResult:
        """Create a hosted subscription checkout."""
        ...

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionDetails:
        """Fetch a checkout session by id."""
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_ref: str) -> ProcessorSubscription:
        """Fetch a subscription by reference."""
        ...

    @abstractmethod
    async def cancel_subscription(self, subscription_ref: str) -> ProcessorSubscription:
        """Cancel a subscription at the end of its current period."""
        ...

    @abstractmethod
    async def retrieve_balance(self) -> ProcessorBalance:
        """Fetch the account balance."""
        ...

    @abstractmethod
    async def get_payout_account_settings(self) -> PayoutAccountSettings:
        """Fetch payout enablement and the linked bank account."""
        ...

    @abstractmethod
    async def create_payout(
        self,
        amount: int,
        currency: str,
        description: str,
        statement_descriptor: str | None = None,
        idempotency_key: str | None = None,
    ) -> PayoutRecord:
        """Move *amount* from the balance to the linked bank account."""
        ...

    @abstractmethod
    async def list_payouts(self, limit: int = 10, status: str | None = None) -> list[PayoutRecord]:
        """List recent payouts, newest first."""
        ...

    @abstractmethod
    async def retrieve_payout(self, payout_id: str) -> PayoutRecord:
        """Fetch a payout by id."""
        ...

    @abstractmethod
    async def cancel_payout(self, payout_id: str) -> PayoutRecord:
        """Cancel a pending payout."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook delivery and return the decoded event."""
        ...


class Notifier(ABC):
    """Abstract sender of billing lifecycle emails."""

    @abstractmethod
    async def send_trial_started(self, to_email: str, name: str, trial_end: datetime) -> bool:
        """Tell the user their trial has started."""
        ...

    @abstractmethod
    async def send_subscription_created(
        self, to_email: str, name: str, plan: str, end_date: datetime
    ) -> bool:
        """Confirm a new paid subscription."""
        ...

    @abstractmethod
    async def send_subscription_canceled(
        self, to_email: str, name: str, plan: str, access_until: datetime
    ) -> bool:
        """Confirm a cancellation and when access ends."""
        ...

    @abstractmethod
    async def send_payment_failed(
        self, to_email: str, name: str, plan: str, next_attempt: datetime
    ) -> bool:
        """Warn about a failed renewal charge."""
        ...

    @abstractmethod
    async def send_payment_received(
        self, to_email: str, name: str, plan: str, next_payment: datetime
    ) -> bool:
        """Confirm a successful renewal charge."""
        ...

    @abstractmethod
    async def send_renewal_reminder(
        self, to_email: str, name: str, plan: str, renewal_date: datetime, amount: float
    ) -> bool:
        """Remind the user of an upcoming renewal."""
        ...
