"""
Payout request/response schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from core.domain.subscription import PayoutRecord
from services.payout_scheduler import PayoutScheduleStatus


class CreatePayoutRequest(BaseModel):
    """Request to create a manual payout."""

    amount: int = Field(..., gt=0, description="Amount in the smallest currency unit (cents)")
    description: str | None = Field(None, max_length=255)

    model_config = {"json_schema_extra": {"example": {"amount": 5000, "description": "Mid-week payout"}}}


class PayoutResponse(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    created_at: datetime | None = None
    arrival_date: datetime | None = None
    description: str | None = None
    method: str | None = None
    statement_descriptor: str | None = None

    @classmethod
    def from_payout(cls, payout: PayoutRecord) -> "PayoutResponse":
        return cls(**payout.to_dict())


class PayoutListResponse(BaseModel):
    payouts: list[PayoutResponse]
    count: int


class PayoutScheduleResponse(BaseModel):
    """Next scheduled payout and whether payouts can run."""

    enabled: bool
    next_payout_at: datetime
    estimated_amount: int = Field(..., description="Buffered available balance in cents")
    currency: str
    bank_last4: str | None = None
    processor_schedule: dict | None = None
    failure_message: str | None = None

    @classmethod
    def from_status(cls, status: PayoutScheduleStatus) -> "PayoutScheduleResponse":
        return cls(
            enabled=status.enabled,
            next_payout_at=status.next_payout_at,
            estimated_amount=status.estimated_amount,
            currency=status.currency,
            bank_last4=status.bank_last4,
            processor_schedule=status.processor_schedule,
            failure_message=status.failure_message,
        )
