"""
Daemon reconciler: asks the chain what became of every pending round.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import structlog

from pool_payments.services.daemon_client import (
    RPC_INVALID_ADDRESS_OR_KEY,
    DaemonClient,
    RpcResult,
)
from ..core.types import CycleStats, PoolContext, Round, RoundCategory


logger = structlog.get_logger(__name__)

RESOLVED_CATEGORIES = (RoundCategory.GENERATE, RoundCategory.ORPHAN, RoundCategory.KICKED)


def can_delete_shares(round_: Round, rounds: Sequence[Round]) -> bool:
    """True when no other round at the same height is still classified GENERATE."""
    for other in rounds:
        if (
            other.height == round_.height
            and other.serialized != round_.serialized
            and other.category is RoundCategory.GENERATE
        ):
            return False
    return True


class DaemonReconciler:
    """Classifies rounds from one batched gettransaction lookup."""

    def __init__(self, context: PoolContext, daemon: DaemonClient):
        self.context = context
        self.daemon = daemon
        self.logger = logger.bind(service="daemon_reconciler", coin=context.coin)

    async def classify(
        self,
        rounds: List[Round],
        stats: CycleStats
    ) -> Tuple[List[Round], Optional[str]]:
        """
        Classify rounds and look up the account owning the pool address.

        Returns:
            Rounds that are GENERATE, ORPHAN or KICKED (pending ones are left
            out and retried next cycle) and the pool's account id.

        Raises:
            DaemonError: the batch call itself failed; nothing has been mutated
        """
        commands = [("gettransaction", [r.tx_hash]) for r in rounds]
        commands.append(("getaccount", [self.context.address]))

        with stats.timed("rpc"):
            results = await self.daemon.batch_cmd(commands)

        account_result = results[-1]
        pool_account = account_result.result if account_result.ok else None
        if not account_result.ok:
            self.logger.warning("getaccount failed, using default account", error=account_result.error)

        for round_, tx in zip(rounds, results[:-1]):
            self._classify_round(round_, tx)

        resolved = [r for r in rounds if r.category in RESOLVED_CATEGORIES]
        for r in resolved:
            if r.category is not RoundCategory.GENERATE:
                r.can_delete_shares = can_delete_shares(r, resolved)

        stats.rounds_generate = sum(1 for r in resolved if r.category is RoundCategory.GENERATE)
        stats.rounds_orphan = sum(1 for r in resolved if r.category is RoundCategory.ORPHAN)
        stats.rounds_kicked = sum(1 for r in resolved if r.category is RoundCategory.KICKED)
        stats.rounds_unresolved = len(rounds) - len(resolved)

        return resolved, pool_account

    def _classify_round(self, round_: Round, tx: RpcResult) -> None:
        if tx.error_code == RPC_INVALID_ADDRESS_OR_KEY:
            self.logger.warning("Daemon reports invalid transaction", tx_hash=round_.tx_hash)
            round_.category = RoundCategory.KICKED
            return

        if not tx.ok or not isinstance(tx.result, dict):
            self.logger.error(
                "Odd error with gettransaction",
                tx_hash=round_.tx_hash,
                error=tx.error,
                result=tx.result
            )
            return

        details = tx.result.get("details")
        if not details:
            self.logger.warning("Daemon reports no details for transaction", tx_hash=round_.tx_hash)
            round_.category = RoundCategory.KICKED
            return

        generation_tx = next(
            (d for d in details if isinstance(d, dict) and d.get("address") == self.context.address),
            None
        )
        if generation_tx is None and len(details) == 1 and isinstance(details[0], dict):
            generation_tx = details[0]

        if generation_tx is None:
            self.logger.error("Missing output details to pool address", tx_hash=round_.tx_hash)
            return

        round_.category = RoundCategory.from_daemon(generation_tx.get("category"))
        if round_.category is RoundCategory.GENERATE:
            amount = generation_tx.get("amount")
            if amount is None:
                amount = generation_tx.get("value")
            round_.reward = Decimal(str(amount)) if amount is not None else Decimal(0)
