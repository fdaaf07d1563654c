"""
Billing error kinds.

Operations in the billing core return a ``BillingError`` value for expected
failures (illegal transition, trial already used, payout not cancelable, ...)
instead of raising. Only the API layer turns these into HTTP responses.
"""

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    """Categories of billing failures."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    SIGNATURE_VERIFICATION = "signature_verification"
    TRIAL_ALREADY_USED = "trial_already_used"
    TRANSITION = "transition"
    EXTERNAL_SERVICE = "external_service"
    PAYOUT_NOT_CANCELABLE = "payout_not_cancelable"
    PAYOUTS_DISABLED = "payouts_disabled"


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SIGNATURE_VERIFICATION: 400,
    ErrorKind.TRIAL_ALREADY_USED: 409,
    ErrorKind.TRANSITION: 409,
    ErrorKind.EXTERNAL_SERVICE: 502,
    ErrorKind.PAYOUT_NOT_CANCELABLE: 409,
    ErrorKind.PAYOUTS_DISABLED: 400,
}


@dataclass(frozen=True)
class BillingError:
    """An expected failure returned from a billing operation."""

    kind: ErrorKind
    message: str
    correlation_id: str | None = None

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        """Only processor failures are worth retrying at the caller."""
        return self.kind == ErrorKind.EXTERNAL_SERVICE


def validation_error(message: str, correlation_id: str | None = None) -> BillingError:
    return BillingError(ErrorKind.VALIDATION, message, correlation_id)


def not_found(message: str, correlation_id: str | None = None) -> BillingError:
    return BillingError(ErrorKind.NOT_FOUND, message, correlation_id)


def external_service_error(message: str, correlation_id: str | None = None) -> BillingError:
    return BillingError(ErrorKind.EXTERNAL_SERVICE, message, correlation_id)


# The state machine's rejection value
TransitionError = BillingError


def transition_error(message: str, correlation_id: str | None = None) -> TransitionError:
    return BillingError(ErrorKind.TRANSITION, message, correlation_id)
