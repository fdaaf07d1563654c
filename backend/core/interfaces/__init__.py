# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .repositories import SubscriptionRepository, WriteOutcome
from .services import (
    Notifier,
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorIdempotencyError,
    ProcessorInvalidRequestError,
    ProcessorNotFoundError,
    ProcessorTimeoutError,
    WebhookPayloadError,
    WebhookSignatureError,
)

__all__ = [
    "SubscriptionRepository",
    "WriteOutcome",
    "PaymentProcessor",
    "Notifier",
    "PaymentProcessorError",
    "ProcessorTimeoutError",
    "ProcessorNotFoundError",
    "ProcessorInvalidRequestError",
    "ProcessorIdempotencyError",
    "WebhookSignatureError",
    "WebhookPayloadError",
]
