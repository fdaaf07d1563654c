"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_billing_scheduler
from infrastructure.config import get_settings
from infrastructure.database import get_db
from infrastructure.database.models import ProcessedWebhookEvent
from services.billing_scheduler import BillingScheduler

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


def _base(status: str) -> dict:
    return {
        "status": status,
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health")
async def health_check():
    """Liveness: the process is up and serving requests."""
    return _base("healthy")


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """
    Database connectivity, plus when the last processor webhook was stored.

    A stale ``last_webhook_at`` in production usually means webhook delivery
    is failing upstream; the expiry sweep still keeps access correct.
    """
    last_webhook_at = None
    try:
        result = await asyncio.wait_for(
            db.execute(select(func.max(ProcessedWebhookEvent.processed_at))), timeout=5.0
        )
        latest = result.scalar()
        last_webhook_at = latest.isoformat() if latest else None
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except SQLAlchemyError as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    body = _base("healthy" if db_status == "connected" else "degraded")
    body.update(database=db_status, last_webhook_at=last_webhook_at)
    return body


@router.get("/health/scheduler")
async def health_check_scheduler(
    scheduler: Annotated[BillingScheduler, Depends(get_billing_scheduler)],
):
    """Billing task loops: whether they run, and each task's next and last run."""
    tasks = scheduler.status()
    failing = [name for name, task in tasks.items() if task["last_error"]]
    expected = settings.scheduler_enabled

    status = "healthy"
    if failing or (expected and not scheduler.is_running):
        status = "degraded"

    body = _base(status)
    body.update(running=scheduler.is_running, enabled=expected, tasks=tasks)
    return body
