"""
Payouts of accumulated processor balance to the linked bank account.

Manual payouts are admin operations; the weekly run pays out whatever the
buffered balance allows. Amounts are integers in the smallest currency unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from enum import StrEnum

from core.domain.subscription import PayoutRecord, PayoutStatus, utcnow
from core.errors import (
    BillingError,
    ErrorKind,
    external_service_error,
    not_found,
    validation_error,
)
from core.interfaces.services import (
    PaymentProcessor,
    PaymentProcessorError,
    PayoutAccountSettings,
    ProcessorIdempotencyError,
    ProcessorInvalidRequestError,
    ProcessorNotFoundError,
)
from services.billing_scheduler import next_weekly_run

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


class WeeklyPayoutStatus(StrEnum):
    CREATED = "created"
    SKIPPED = "skipped"
    DISABLED = "disabled"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class WeeklyPayoutResult:
    status: WeeklyPayoutStatus
    amount: int = 0
    payout: PayoutRecord | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "amount": self.amount,
            "payout": self.payout.to_dict() if self.payout else None,
            "reason": self.reason,
        }


@dataclass
class PayoutScheduleStatus:
    enabled: bool
    next_payout_at: datetime
    estimated_amount: int
    currency: str
    bank_last4: str | None = None
    processor_schedule: dict | None = None
    failure_message: str | None = None


def weekly_idempotency_key(now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"weekly-payout-{year}-W{week:02d}"


def weekly_payout_description(now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"Weekly payout {year}-W{week:02d}"


class PayoutScheduler:
    """Payout operations against the payment processor."""

    def __init__(
        self,
        processor: PaymentProcessor,
        buffer_fraction: float = 0.10,
        currency: str = "usd",
        statement_descriptor: str | None = None,
        weekday: int = 0,
        hour: int = 1,
    ):
        if not 0 <= buffer_fraction < 1:
            raise ValueError("buffer_fraction must be in [0, 1)")
        self._processor = processor
        self._buffer = Decimal(str(buffer_fraction))
        self._currency = currency.lower()
        self._statement_descriptor = statement_descriptor
        self._weekday = weekday
        self._hour = hour

    async def get_payout_settings(self) -> PayoutAccountSettings | BillingError:
        try:
            return await self._processor.get_payout_account_settings()
        except PaymentProcessorError as e:
            logger.error(f"Failed to load payout settings: {e}")
            return external_service_error("Failed to load payout settings")

    async def calculate_payout_amount(self) -> int | BillingError:
        """Available balance in the payout currency less the buffer, floored, never negative."""
        try:
            balance = await self._processor.retrieve_balance()
        except PaymentProcessorError as e:
            logger.error(f"Failed to retrieve balance: {e}")
            return external_service_error("Failed to retrieve balance")

        available = Decimal(balance.available_in(self._currency))
        amount = (available * (1 - self._buffer)).to_integral_value(rounding=ROUND_FLOOR)
        return max(int(amount), 0)

    async def create_payout(
        self,
        amount: int,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> PayoutRecord | BillingError:
        if amount <= 0:
            return validation_error("Payout amount must be positive")

        account = await self.get_payout_settings()
        if isinstance(account, BillingError):
            return account
        if not account.payouts_enabled:
            return self._disabled(account)

        limit = await self.calculate_payout_amount()
        if isinstance(limit, BillingError):
            return limit
        if amount > limit:
            logger.warning(f"Payout of {amount} refused, only {limit} available after buffer")
            return validation_error(
                f"Payout amount {amount} exceeds the available balance after buffer ({limit})"
            )

        try:
            payout = await self._processor.create_payout(
                amount=amount,
                currency=self._currency,
                description=description or f"Manual payout {utcnow():%Y-%m-%d}",
                statement_descriptor=self._statement_descriptor,
                idempotency_key=idempotency_key,
            )
        except ProcessorInvalidRequestError as e:
            return validation_error(f"Payout rejected by processor: {e}")
        except PaymentProcessorError as e:
            logger.error(f"Payout creation failed: {e}")
            return external_service_error("Failed to create payout")

        logger.info(f"Payout {payout.id} created for {amount}", extra={"payout_id": payout.id})
        return payout

    async def cancel_payout(self, payout_id: str) -> PayoutRecord | BillingError:
        """Cancel a payout that is still pending."""
        current = await self.get_payout(payout_id)
        if isinstance(current, BillingError):
            return current
        if current.status != PayoutStatus.PENDING:
            return BillingError(
                ErrorKind.PAYOUT_NOT_CANCELABLE,
                f"Payout is {current.status.value}; only pending payouts can be canceled",
                payout_id,
            )

        try:
            payout = await self._processor.cancel_payout(payout_id)
        except ProcessorInvalidRequestError as e:
            # Left pending between our read and the cancel call
            return BillingError(ErrorKind.PAYOUT_NOT_CANCELABLE, str(e), payout_id)
        except PaymentProcessorError as e:
            logger.error(f"Payout cancellation failed: {e}", extra={"payout_id": payout_id})
            return external_service_error("Failed to cancel payout", payout_id)
        return payout

    async def get_payout(self, payout_id: str) -> PayoutRecord | BillingError:
        try:
            return await self._processor.retrieve_payout(payout_id)
        except ProcessorNotFoundError:
            return not_found(f"Payout {payout_id} not found", payout_id)
        except PaymentProcessorError as e:
            logger.error(f"Payout lookup failed: {e}", extra={"payout_id": payout_id})
            return external_service_error("Failed to retrieve payout", payout_id)

    async def list_payouts(
        self, limit: int = 10, status: str | None = None
    ) -> list[PayoutRecord] | BillingError:
        if not 1 <= limit <= MAX_LIST_LIMIT:
            return validation_error(f"limit must be between 1 and {MAX_LIST_LIMIT}")
        if status is not None:
            try:
                status = PayoutStatus(status).value
            except ValueError:
                return validation_error(f"Invalid payout status: {status}")
        try:
            return await self._processor.list_payouts(limit=limit, status=status)
        except PaymentProcessorError as e:
            logger.error(f"Payout listing failed: {e}")
            return external_service_error("Failed to list payouts")

    async def get_schedule_status(self, now: datetime | None = None) -> PayoutScheduleStatus | BillingError:
        now = now or utcnow()
        account = await self.get_payout_settings()
        if isinstance(account, BillingError):
            return account

        estimate = await self.calculate_payout_amount()
        if isinstance(estimate, BillingError):
            estimate = 0

        return PayoutScheduleStatus(
            enabled=account.payouts_enabled,
            next_payout_at=next_weekly_run(now, self._weekday, self._hour),
            estimated_amount=estimate,
            currency=self._currency,
            bank_last4=account.bank_last4,
            processor_schedule=account.schedule,
            failure_message=None if account.payouts_enabled else account.failure_message,
        )

    async def run_weekly(self, now: datetime | None = None) -> WeeklyPayoutResult:
        """Pay out the buffered balance; at most one payout per ISO week.

        The week is looked up in the processor's recent payouts by description
        before anything is created. Processor idempotency keys expire after a
        day, so they only cover two runs racing each other.
        """
        now = now or utcnow()
        log_extra = {"task": "weekly_payout"}

        account = await self.get_payout_settings()
        if isinstance(account, BillingError):
            return WeeklyPayoutResult(WeeklyPayoutStatus.FAILED, reason=account.message)
        if not account.payouts_enabled:
            reason = self._disabled(account).message
            logger.warning(f"Weekly payout skipped: {reason}", extra=log_extra)
            return WeeklyPayoutResult(WeeklyPayoutStatus.DISABLED, reason=reason)

        description = weekly_payout_description(now)
        existing = await self._find_payout(description)
        if isinstance(existing, BillingError):
            return WeeklyPayoutResult(WeeklyPayoutStatus.FAILED, reason=existing.message)
        if existing is not None:
            logger.info(
                f"Weekly payout already created this week: {existing.id}",
                extra={**log_extra, "payout_id": existing.id},
            )
            return WeeklyPayoutResult(
                WeeklyPayoutStatus.DUPLICATE,
                amount=existing.amount,
                payout=existing,
                reason="Already paid out this week",
            )

        amount = await self.calculate_payout_amount()
        if isinstance(amount, BillingError):
            return WeeklyPayoutResult(WeeklyPayoutStatus.FAILED, reason=amount.message)
        if amount <= 0:
            logger.info("Weekly payout skipped: nothing available", extra=log_extra)
            return WeeklyPayoutResult(WeeklyPayoutStatus.SKIPPED, reason="No available balance")

        try:
            payout = await self._processor.create_payout(
                amount=amount,
                currency=self._currency,
                description=description,
                statement_descriptor=self._statement_descriptor,
                idempotency_key=weekly_idempotency_key(now),
            )
        except ProcessorIdempotencyError:
            logger.info("Weekly payout already created this week", extra=log_extra)
            return WeeklyPayoutResult(
                WeeklyPayoutStatus.DUPLICATE, amount=amount, reason="Already paid out this week"
            )
        except PaymentProcessorError as e:
            logger.error(f"Weekly payout failed: {e}", extra=log_extra)
            return WeeklyPayoutResult(WeeklyPayoutStatus.FAILED, amount=amount, reason=str(e))

        logger.info(
            f"Weekly payout {payout.id} created for {amount} {self._currency}",
            extra={**log_extra, "payout_id": payout.id},
        )
        return WeeklyPayoutResult(WeeklyPayoutStatus.CREATED, amount=amount, payout=payout)

    async def _find_payout(self, description: str) -> PayoutRecord | None | BillingError:
        try:
            recent = await self._processor.list_payouts(limit=MAX_LIST_LIMIT)
        except PaymentProcessorError as e:
            logger.error(f"Payout listing failed: {e}", extra={"task": "weekly_payout"})
            return external_service_error("Failed to check this week's payouts")
        return next((p for p in recent if p.description == description), None)

    @staticmethod
    def _disabled(account: PayoutAccountSettings) -> BillingError:
        reason = account.failure_message or "no verified bank account"
        return BillingError(ErrorKind.PAYOUTS_DISABLED, f"Payouts are disabled: {reason}")
