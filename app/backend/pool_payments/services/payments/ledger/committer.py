"""
Ledger committer: applies the cycle's outcome to Redis in one MULTI.
"""

from decimal import Decimal
from typing import Dict, List, Sequence

import structlog

from pool_payments.core.exceptions import CommitError, StoreError
from pool_payments.store.keys import PoolKeys
from pool_payments.store.redis_client import Command, RedisClient
from ..core.controller import CycleController
from ..core.types import CycleStats, PoolContext, Round, RoundCategory, WorkerAccount
from ..rounds.sweeper import retire_invalid_round, terminal_set
from .recovery import RecoveryStore


logger = structlog.get_logger(__name__)


class LedgerCommitter:
    """Builds and applies the final balance/payout/round batch."""

    def __init__(
        self,
        context: PoolContext,
        redis: RedisClient,
        controller: CycleController,
        recovery: RecoveryStore
    ):
        self.context = context
        self.redis = redis
        self.controller = controller
        self.recovery = recovery
        self.keys = PoolKeys(context.coin)
        self.logger = logger.bind(service="ledger_committer", coin=context.coin)

    def build_commands(
        self,
        rounds: Sequence[Round],
        workers: Dict[str, WorkerAccount]
    ) -> List[Command]:
        moves: List[Command] = []
        merges: List[Command] = []
        to_delete: List[str] = []

        for round_ in rounds:
            if round_.category is RoundCategory.GENERATE:
                moves.append(("smove", self.keys.blocks_pending, terminal_set(self.keys, round_.category), round_.serialized))
                share_key = self.keys.shares_round(round_.height)
                if share_key not in to_delete:
                    to_delete.append(share_key)
            elif round_.category in (RoundCategory.ORPHAN, RoundCategory.KICKED):
                commands, keys = retire_invalid_round(self.keys, round_)
                moves.append(commands[0])
                if not any(key in to_delete for key in keys):
                    merges.extend(commands[1:])
                    to_delete.extend(keys)
            else:
                self.logger.warning("Skipping unresolved round at commit", token=round_.serialized)

        balance_updates: List[Command] = []
        payout_updates: List[Command] = []
        total_paid = Decimal(0)
        for key, worker in workers.items():
            if worker.balance_change != 0:
                balance_updates.append((
                    "hincrbyfloat",
                    self.keys.balances,
                    key,
                    str(self.context.units_to_coins(worker.balance_change))
                ))
            if worker.sent_units != 0:
                payout_updates.append(("hincrbyfloat", self.keys.payouts, key, str(worker.sent)))
                total_paid += worker.sent

        commands = moves + merges + balance_updates + payout_updates
        if to_delete:
            commands.append(("del", *to_delete))
        if total_paid != 0:
            commands.append(("hincrbyfloat", self.keys.stats, "totalPaid", str(total_paid)))
        return commands

    async def commit(
        self,
        rounds: Sequence[Round],
        workers: Dict[str, WorkerAccount],
        payment_sent: bool,
        stats: CycleStats
    ) -> List[Command]:
        """
        Apply all ledger mutations atomically.

        Raises:
            CommitError: the batch failed. If a payment had already been sent
                the pool is disabled and the batch written for manual replay.
        """
        commands = self.build_commands(rounds, workers)
        if not commands:
            self.recovery.clear_intent()
            return commands

        try:
            with stats.timed("redis"):
                await self.redis.execute_batch(commands)
        except StoreError as e:
            if payment_sent:
                artifact = self.recovery.write_commands(commands)
                self.controller.disable("ledger commit failed after payment was sent")
                self.logger.critical(
                    "Payments sent but could not update redis. Disabling payment processing "
                    "to prevent possible double-payouts. The redis commands must be ran manually",
                    artifact=str(artifact) if artifact else None,
                    commands=len(commands),
                    error=e.message
                )
            else:
                self.recovery.clear_intent()
            raise CommitError("Ledger commit failed", {"payment_sent": payment_sent, "error": e.message}) from e

        self.recovery.clear_intent()
        return commands
