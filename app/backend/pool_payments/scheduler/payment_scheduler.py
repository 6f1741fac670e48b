"""
Single-slot payment scheduler for one pool.

A tick starts a cycle only when no cycle is in flight; ticks that arrive
while one is running are dropped, never queued.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from pool_payments.core.config import settings
from pool_payments.services.payments import PaymentProcessor


logger = structlog.get_logger(__name__)


class SchedulerStatus(Enum):
    """Status of a pool's payment scheduler."""
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"
    DISABLED = "disabled"


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    total_runs: int = 0
    aborted_runs: int = 0
    dropped_ticks: int = 0
    uptime_start: Optional[datetime] = None


class PaymentScheduler:
    """Runs ``processor.run_cycle`` on a fixed interval, one cycle at a time."""

    def __init__(
        self,
        processor: PaymentProcessor,
        interval_seconds: Optional[float] = None,
        first_run_delay: Optional[float] = None
    ):
        self.processor = processor
        self.controller = processor.controller
        self.interval_seconds = interval_seconds or processor.context.payment_interval
        self.first_run_delay = settings.first_run_delay if first_run_delay is None else first_run_delay

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats()
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(service="payment_scheduler", coin=processor.context.coin)

    @property
    def in_flight(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    async def start(self) -> None:
        """Start ticking; the first cycle fires after ``first_run_delay``."""
        if self.controller.is_disabled():
            self.status = SchedulerStatus.DISABLED
            self.logger.error("Pool is disabled, not scheduling", reason=self.controller.disabled_reason)
            return
        if self.status is not SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self.stats.uptime_start = datetime.utcnow()
        self.status = SchedulerStatus.WAITING
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        self.logger.info(
            "Payment processing setup to run",
            interval_seconds=self.interval_seconds,
            first_run_delay=self.first_run_delay
        )

    async def stop(self) -> None:
        """Stop ticking and wait for an in-flight cycle to finish."""
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        self._loop_task = None

        if self.in_flight:
            self.logger.info("Waiting for in-flight cycle to finish")
            await asyncio.shield(self._cycle_task)

        if self.status is not SchedulerStatus.DISABLED:
            self.status = SchedulerStatus.STOPPED
        self.logger.info("Payment scheduler stopped")

    async def _scheduler_loop(self) -> None:
        await asyncio.sleep(self.first_run_delay)
        while True:
            if not self.tick():
                break
            await asyncio.sleep(self.interval_seconds)

    def tick(self) -> bool:
        """
        Start a cycle unless one is already running.

        Returns:
            False once the pool is disabled and the loop should end
        """
        if self.controller.is_disabled():
            self.status = SchedulerStatus.DISABLED
            self.logger.error("Payment processing disabled, stopping scheduler", reason=self.controller.disabled_reason)
            return False

        if self.in_flight:
            self.stats.dropped_ticks += 1
            self.logger.warning("Previous cycle still running, skipping tick", dropped_ticks=self.stats.dropped_ticks)
            return True

        self._cycle_task = asyncio.create_task(self._run_cycle())
        return True

    async def _run_cycle(self) -> None:
        self.status = SchedulerStatus.PROCESSING
        self.stats.total_runs += 1
        try:
            cycle_stats = await self.processor.run_cycle()
            if cycle_stats.aborted_stage:
                self.stats.aborted_runs += 1
        except Exception as e:
            # Pool-local: never let a cycle failure escape into other pools
            self.stats.aborted_runs += 1
            self.logger.exception("Unexpected error in payment cycle", error=str(e))
        finally:
            self.stats.last_run = datetime.utcnow()
            if self.controller.is_disabled():
                self.status = SchedulerStatus.DISABLED
            elif self._loop_task is not None:
                self.status = SchedulerStatus.WAITING

    def get_status(self) -> Dict[str, Any]:
        """Get current scheduler status."""
        return {
            "status": self.status.value,
            "interval_seconds": self.interval_seconds,
            "in_flight": self.in_flight,
            "stats": asdict(self.stats),
            "processor": self.processor.get_status(),
        }
