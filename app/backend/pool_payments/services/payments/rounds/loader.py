"""
Round loader: reads balances and pending blocks in one atomic batch.
"""

from typing import Dict, List, Tuple

import structlog

from pool_payments.store.keys import PoolKeys
from pool_payments.store.redis_client import RedisClient
from ..core.types import CycleStats, PoolContext, Round, WorkerAccount


logger = structlog.get_logger(__name__)

DEFAULT_MAX_ROUNDS = 500


class RoundLoader:
    """Collects the cycle's starting state from Redis."""

    def __init__(
        self,
        context: PoolContext,
        redis: RedisClient,
        max_rounds: int = DEFAULT_MAX_ROUNDS
    ):
        self.context = context
        self.redis = redis
        self.keys = PoolKeys(context.coin)
        self.max_rounds = max_rounds
        self.logger = logger.bind(service="round_loader", coin=context.coin)

    async def load(self, stats: CycleStats) -> Tuple[Dict[str, WorkerAccount], List[Round]]:
        """
        Read ``balances`` and ``blocksPending`` with one MULTI.

        Returns:
            Worker accounts keyed by worker, and at most ``max_rounds`` rounds
            ordered by height; the rest wait for a later cycle.

        Raises:
            StoreError: the read failed; nothing has been mutated
        """
        with stats.timed("redis"):
            balances, pending = await self.redis.execute_batch([
                ("hgetall", self.keys.balances),
                ("smembers", self.keys.blocks_pending),
            ])

        workers = {
            worker: WorkerAccount(key=worker, balance=self.context.coins_to_units(value))
            for worker, value in (balances or {}).items()
        }

        rounds: List[Round] = []
        for token in pending or ():
            try:
                rounds.append(Round.from_token(token))
            except ValueError:
                self.logger.error("Skipping malformed pending round", token=token)

        rounds.sort(key=lambda r: (r.height, r.serialized))
        stats.rounds_loaded = len(rounds)

        if len(rounds) > self.max_rounds:
            stats.rounds_deferred = len(rounds) - self.max_rounds
            self.logger.warning(
                "Pending rounds exceed per-cycle limit, deferring the rest",
                pending=len(rounds),
                limit=self.max_rounds
            )
            rounds = rounds[:self.max_rounds]

        return workers, rounds
