"""
Payment processor: runs one reconciliation cycle for one pool.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from pool_payments.core.config import settings
from pool_payments.core.exceptions import (
    CommitError,
    CycleAbortedError,
    DaemonError,
    PaymentError,
    PaymentOutcomeUnknownError,
    StoreError,
)
from pool_payments.services.address_resolver import AddressResolver
from pool_payments.services.daemon_client import DaemonClient
from pool_payments.store.redis_client import RedisClient
from ..disbursement.engine import DisbursementEngine
from ..ledger.committer import LedgerCommitter
from ..ledger.recovery import RecoveryStore
from ..rounds.allocator import RewardAllocator
from ..rounds.loader import RoundLoader
from ..rounds.reconciler import DaemonReconciler
from ..rounds.sweeper import RoundSweeper
from .controller import CycleController
from .types import CycleStage, CycleStats, PoolContext


logger = structlog.get_logger(__name__)


class PaymentProcessor:
    """
    Drives Loader -> Reconciler -> Allocator -> Sweeper -> Disbursement -> Committer.

    Failures before the payment abort the cycle with nothing mutated beyond
    the sweep batch, and the next cycle starts from fresh state. Failures
    after a payment disable the pool through the controller.
    """

    def __init__(
        self,
        context: PoolContext,
        redis: RedisClient,
        daemon: DaemonClient,
        controller: Optional[CycleController] = None,
        recovery_dir: Optional[Path] = None,
        max_rounds: Optional[int] = None,
        withhold_step: Optional[Decimal] = None
    ):
        self.context = context
        self.controller = controller or CycleController(context.coin)
        self.recovery = RecoveryStore(recovery_dir or settings.recovery_dir, context.coin)

        self.loader = RoundLoader(context, redis, max_rounds or settings.max_rounds_per_cycle)
        self.reconciler = DaemonReconciler(context, daemon)
        self.allocator = RewardAllocator(context, redis)
        self.sweeper = RoundSweeper(context, redis)
        self.disbursement = DisbursementEngine(
            context,
            daemon,
            self.recovery,
            resolver=AddressResolver(context.address),
            withhold_step=withhold_step or settings.withhold_step
        )
        self.committer = LedgerCommitter(context, redis, self.controller, self.recovery)

        self.last_stats: Optional[CycleStats] = None
        self.logger = logger.bind(service="payment_processor", coin=context.coin)

    async def run_cycle(self) -> CycleStats:
        """
        Run one full cycle.

        Returns:
            CycleStats; ``aborted_stage`` is set if the cycle stopped early
        """
        stats = CycleStats(start_time=datetime.now(timezone.utc))
        self.last_stats = stats

        if self.controller.is_disabled():
            stats.aborted_stage = CycleStage.DISABLED.value
            return stats

        if self.recovery.has_intent():
            intent = self.recovery.load_intent() or {}
            self.logger.critical(
                "Found payment intent from an unfinished cycle",
                txid=intent.get("txid"),
                recipients=len(intent.get("amounts", {})),
                updated_at=intent.get("updated_at")
            )
            self.controller.disable(
                f"unresolved payment intent at {self.recovery.intent_path}; "
                "reconcile the ledger and remove the file to resume"
            )
            stats.aborted_stage = CycleStage.DISABLED.value
            return stats

        try:
            await self._run_stages(stats)
        except CycleAbortedError as e:
            stats.aborted_stage = e.stage
            self.logger.error(
                "Cycle aborted, will retry next interval",
                stage=stats.aborted_stage,
                error=e.message,
                details=e.details
            )
        except PaymentOutcomeUnknownError as e:
            stats.aborted_stage = self.controller.stage.value
            self.controller.disable(f"payment outcome unknown: {e.message}")
        except PaymentError as e:
            stats.aborted_stage = self.controller.stage.value
            self.logger.error("Payment failed, cycle aborted with no ledger change", error=e.message)
        except CommitError as e:
            stats.aborted_stage = CycleStage.COMMITTING.value
            self.logger.error("Ledger commit failed", details=e.details)
        finally:
            self.controller.finish()
            stats.end_time = datetime.now(timezone.utc)
            self.logger.info(
                "Finished interval",
                total_ms=round(stats.total_time_ms, 1),
                redis_ms=round(stats.time_redis_ms, 1),
                rpc_ms=round(stats.time_rpc_ms, 1),
                rounds=stats.rounds_loaded,
                confirmed=stats.rounds_generate,
                orphaned=stats.rounds_orphan,
                kicked=stats.rounds_kicked,
                workers_paid=stats.workers_paid,
                total_sent=str(stats.total_sent),
                aborted_stage=stats.aborted_stage
            )

        return stats

    async def _run_stages(self, stats: CycleStats) -> None:
        try:
            self.controller.enter(CycleStage.COLLECTING)
            workers, rounds = await self.loader.load(stats)

            self.controller.enter(CycleStage.RECONCILING)
            rounds, pool_account = await self.reconciler.classify(rounds, stats)

            self.controller.enter(CycleStage.ALLOCATING)
            await self.allocator.allocate(rounds, workers, stats)

            self.controller.enter(CycleStage.SWEEPING)
            _, rounds = await self.sweeper.sweep(rounds, stats)

            self.controller.enter(CycleStage.DISBURSING)
            batch = await self.disbursement.disburse(workers, pool_account, stats)
        except (StoreError, DaemonError) as e:
            raise CycleAbortedError(self.controller.stage.value, e.message, e.details) from e

        self.controller.enter(CycleStage.COMMITTING)
        await self.committer.commit(rounds, workers, batch.sent, stats)

    def get_status(self) -> Dict[str, Any]:
        """Get current processor status and last cycle statistics."""
        return {
            "coin": self.context.coin,
            "stage": self.controller.stage.value,
            "disabled": self.controller.is_disabled(),
            "disabled_reason": self.controller.disabled_reason,
            "last_cycle": asdict(self.last_stats) if self.last_stats else None,
        }
