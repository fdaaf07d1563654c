"""
Payout API routes (admin only).
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from api.dependencies import get_current_admin_user, get_payout_scheduler
from api.errors import unwrap
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.payouts import (
    CreatePayoutRequest,
    PayoutListResponse,
    PayoutResponse,
    PayoutScheduleResponse,
)
from infrastructure.database.models.user import User
from services.payout_scheduler import MAX_LIST_LIMIT, PayoutScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["payouts"])

AdminUser = Annotated[User, Depends(get_current_admin_user)]
Payouts = Annotated[PayoutScheduler, Depends(get_payout_scheduler)]


@router.post("", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("payout_mutation"))
async def create_payout(
    request: Request,
    body: CreatePayoutRequest,
    admin_user: AdminUser,
    payouts: Payouts,
):
    """
    Create a manual payout.

    The amount may not exceed the available balance less the reserve buffer.
    """
    payout = unwrap(await payouts.create_payout(body.amount, body.description))
    logger.info(
        f"Manual payout of {body.amount} requested",
        extra={"user_id": admin_user.id, "payout_id": payout.id},
    )
    return PayoutResponse.from_payout(payout)


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    admin_user: AdminUser,
    payouts: Payouts,
    limit: int = Query(10, ge=1, le=MAX_LIST_LIMIT),
    status_filter: str | None = Query(None, alias="status"),
):
    """List recent payouts, optionally filtered by status."""
    items = unwrap(await payouts.list_payouts(limit=limit, status=status_filter))
    return PayoutListResponse(
        payouts=[PayoutResponse.from_payout(p) for p in items],
        count=len(items),
    )


@router.get("/schedule", response_model=PayoutScheduleResponse)
async def get_schedule_status(admin_user: AdminUser, payouts: Payouts):
    """Next scheduled payout, estimated amount and whether payouts are enabled."""
    schedule = unwrap(await payouts.get_schedule_status())
    return PayoutScheduleResponse.from_status(schedule)


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_payout(payout_id: str, admin_user: AdminUser, payouts: Payouts):
    return PayoutResponse.from_payout(unwrap(await payouts.get_payout(payout_id)))


@router.post("/{payout_id}/cancel", response_model=PayoutResponse)
@limiter.limit(get_rate_limit("payout_mutation"))
async def cancel_payout(
    request: Request,
    payout_id: str,
    admin_user: AdminUser,
    payouts: Payouts,
):
    """Cancel a pending payout. Non-pending payouts return 409 ``payout_not_cancelable``."""
    payout = unwrap(await payouts.cancel_payout(payout_id))
    logger.info("Payout canceled", extra={"user_id": admin_user.id, "payout_id": payout_id})
    return PayoutResponse.from_payout(payout)
