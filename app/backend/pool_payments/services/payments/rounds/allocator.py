"""
Reward allocator: splits confirmed block rewards across workers by share.
"""

import math
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Dict, List, Mapping

import structlog

from pool_payments.store.keys import PoolKeys
from pool_payments.store.redis_client import RedisClient
from ..core.types import CycleStats, PoolContext, Round, RoundCategory, WorkerAccount


logger = structlog.get_logger(__name__)


def split_reward(reward_units: int, worker_shares: Mapping[str, object]) -> Dict[str, int]:
    """
    Floor-split ``reward_units`` proportionally to share weights.

    The sum of the result never exceeds ``reward_units``; any remainder is
    left unallocated. Exact rational arithmetic is used so flooring cannot be
    disturbed by decimal rounding.
    """
    weights: Dict[str, Fraction] = {}
    for worker, raw in worker_shares.items():
        try:
            weight = Fraction(Decimal(str(raw)))
        except (InvalidOperation, ValueError):
            logger.warning("Ignoring non-numeric share weight", worker=worker, value=raw)
            continue
        if weight > 0:
            weights[worker] = weight

    total = sum(weights.values())
    if total <= 0:
        return {}

    return {
        worker: math.floor(reward_units * weight / total)
        for worker, weight in weights.items()
    }


class RewardAllocator:
    """Credits GENERATE rewards and carries share maps of invalid rounds."""

    def __init__(self, context: PoolContext, redis: RedisClient):
        self.context = context
        self.redis = redis
        self.keys = PoolKeys(context.coin)
        self.logger = logger.bind(service="reward_allocator", coin=context.coin)

    async def allocate(
        self,
        rounds: List[Round],
        workers: Dict[str, WorkerAccount],
        stats: CycleStats
    ) -> None:
        """
        Fetch every round's share record in one MULTI and apply it.

        GENERATE rounds add to worker rewards in place; ORPHAN and KICKED
        rounds keep their share map on ``Round.worker_shares`` for the sweeper.

        Raises:
            StoreError: the share read failed; nothing has been mutated
        """
        if not rounds:
            return

        with stats.timed("redis"):
            all_shares = await self.redis.execute_batch(
                [("hgetall", self.keys.shares_round(r.height)) for r in rounds]
            )

        confirmed_heights = set()
        for round_, worker_shares in zip(rounds, all_shares):
            if round_.category is RoundCategory.GENERATE:
                if round_.height in confirmed_heights:
                    self.logger.warning(
                        "Several confirmed rounds at one height credit the same share record",
                        height=round_.height,
                        block_hash=round_.block_hash
                    )
                confirmed_heights.add(round_.height)

            if not worker_shares:
                self.logger.error(
                    "No worker shares for round",
                    height=round_.height,
                    block_hash=round_.block_hash
                )
                continue

            if round_.category is RoundCategory.GENERATE:
                self._credit(round_, worker_shares, workers)
            elif round_.category in (RoundCategory.ORPHAN, RoundCategory.KICKED):
                round_.worker_shares = dict(worker_shares)

    def _credit(
        self,
        round_: Round,
        worker_shares: Mapping[str, object],
        workers: Dict[str, WorkerAccount]
    ) -> None:
        reward_units = self.context.coins_to_units(round_.reward or 0)
        payouts = split_reward(reward_units, worker_shares)
        if not payouts:
            self.logger.error("Round has no positive share weight", height=round_.height)
            return

        for worker, amount in payouts.items():
            account = workers.get(worker)
            if account is None:
                account = workers[worker] = WorkerAccount(key=worker)
            account.reward += amount

        self.logger.debug(
            "Allocated block reward",
            height=round_.height,
            reward_units=reward_units,
            allocated=sum(payouts.values()),
            workers=len(payouts)
        )
