"""
Billing Scheduler.

Runs the recurring billing jobs (expiry sweep, weekly payout, renewal
reminders) as independent background loops. Each job is a named task that
can also be run on demand with ``run_task``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from core.domain.subscription import utcnow

logger = logging.getLogger(__name__)


def next_weekly_run(now: datetime, weekday: int, hour: int) -> datetime:
    """Next occurrence of *weekday* (0 = Monday) at *hour*:00, strictly after *now*."""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    candidate += timedelta(days=(weekday - now.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def next_daily_run(now: datetime, hour: int) -> datetime:
    """Next *hour*:00, strictly after *now*."""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def every(seconds: float) -> Callable[[datetime], datetime]:
    def _next(now: datetime) -> datetime:
        return now + timedelta(seconds=seconds)

    return _next


@dataclass
class ScheduledTask:
    name: str
    run: Callable[[], Awaitable[Any]]
    next_run: Callable[[datetime], datetime]
    last_run_at: datetime | None = None
    last_error: str | None = None


class UnknownTaskError(KeyError):
    """Raised by ``run_task`` for a name that is not registered."""


class BillingScheduler:
    """Owns the billing background loops."""

    def __init__(self, tasks: list[ScheduledTask], clock: Callable[[], datetime] = utcnow):
        self._tasks = {task.name: task for task in tasks}
        self._clock = clock
        self._loops: list[asyncio.Task] = []
        self.is_running = False

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    async def run_task(self, name: str) -> Any:
        """Run one task now. Errors propagate to the caller."""
        task = self._tasks.get(name)
        if task is None:
            raise UnknownTaskError(name)

        logger.info(f"Running billing task {name}", extra={"task": name})
        task.last_run_at = self._clock()
        try:
            result = await task.run()
        except Exception as e:
            task.last_error = str(e)
            raise
        task.last_error = None
        return result

    def start(self) -> None:
        """Start one loop per task on the running event loop."""
        if self.is_running:
            logger.warning("Billing scheduler is already running")
            return

        self.is_running = True
        for task in self._tasks.values():
            self._loops.append(asyncio.create_task(self._loop(task), name=f"billing-{task.name}"))
        logger.info(f"Billing scheduler started with tasks: {', '.join(self._tasks)}")

    async def stop(self) -> None:
        if not self.is_running:
            return

        self.is_running = False
        for loop in self._loops:
            loop.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()
        logger.info("Billing scheduler stopped")

    def status(self) -> dict[str, dict]:
        now = self._clock()
        return {
            name: {
                "next_run_at": task.next_run(now).isoformat(),
                "last_run_at": task.last_run_at.isoformat() if task.last_run_at else None,
                "last_error": task.last_error,
            }
            for name, task in self._tasks.items()
        }

    async def _loop(self, task: ScheduledTask) -> None:
        while self.is_running:
            delay = (task.next_run(self._clock()) - self._clock()).total_seconds()
            await asyncio.sleep(max(delay, 0))
            try:
                await self.run_task(task.name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed run never stops the loop
                logger.error(f"Billing task {task.name} failed: {e}", exc_info=True, extra={"task": task.name})
