"""
Reconciliation sweep.

Expires trials and paid periods whose dates have passed and re-mirrors any
user projection that disagrees with its current record. This runs whether or
not the processor ever delivered a webhook, so it is what eventually brings
stored state in line with the calendar.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from core.domain.events import SweepExpired
from core.domain.subscription import utcnow
from core.interfaces.repositories import SubscriptionRepository
from services.subscription_lifecycle import ApplyOutcome, SubscriptionLifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What one sweep cycle did."""

    started_at: datetime
    scanned: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
    projections_repaired: int = 0
    expired_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "scanned": self.scanned,
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": self.failed,
            "projections_repaired": self.projections_repaired,
        }


class ReconciliationSweeper:
    """Applies SweepExpired to overdue records, one compare-and-swap each."""

    def __init__(self, repository: SubscriptionRepository, lifecycle: SubscriptionLifecycle):
        self._repository = repository
        self._lifecycle = lifecycle

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport(started_at=now)

        candidates = await self._repository.list_expirable(now)
        report.scanned = len(candidates)

        for record in candidates:
            try:
                result = await self._lifecycle.apply(
                    record, SweepExpired(now=now), retry_on_conflict=False
                )
            except SQLAlchemyError as e:
                report.failed += 1
                logger.error(f"Sweep failed for record: {e}", extra={"record_id": record.id})
                continue

            if result.applied:
                report.expired += 1
                report.expired_ids.append(record.id)
            elif result.outcome in (ApplyOutcome.CONFLICT, ApplyOutcome.REJECTED):
                # Changed underneath us; next cycle sees the new state
                report.skipped += 1
                logger.debug("Sweep skipped record", extra={"record_id": record.id})
            else:
                report.failed += 1

        report.projections_repaired = await self._repair_projections()

        logger.info(
            f"Expiry sweep: scanned={report.scanned} expired={report.expired} "
            f"skipped={report.skipped} failed={report.failed} "
            f"repaired={report.projections_repaired}",
            extra={"task": "expiry_sweep"},
        )
        return report

    async def _repair_projections(self) -> int:
        repaired = 0
        for user_id, record_id, status in await self._repository.list_projection_drift():
            if await self._repository.repair_projection(user_id, record_id, status):
                repaired += 1
                logger.warning(
                    f"Projection status repaired to {status}",
                    extra={"user_id": user_id, "record_id": record_id},
                )
        return repaired
