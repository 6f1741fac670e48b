"""
Kicked/orphan sweeper: retires invalid rounds before any money moves.
"""

from typing import List, Sequence, Tuple

import structlog

from pool_payments.store.keys import PoolKeys
from pool_payments.store.redis_client import Command, RedisClient
from ..core.types import CycleStats, PoolContext, Round, RoundCategory
from .reconciler import can_delete_shares


logger = structlog.get_logger(__name__)


def terminal_set(keys: PoolKeys, category: RoundCategory) -> str:
    """Terminal set a resolved round moves into."""
    if category is RoundCategory.GENERATE:
        return keys.blocks_confirmed
    if category is RoundCategory.ORPHAN:
        return keys.blocks_orphaned
    if category is RoundCategory.KICKED:
        return keys.blocks_kicked
    raise ValueError(f"Round category {category.value} has no terminal set")


def retire_invalid_round(keys: PoolKeys, round_: Round) -> Tuple[List[Command], List[str]]:
    """
    Commands that retire one ORPHAN or KICKED round.

    Returns:
        ``(commands, share_keys_to_delete)``. Shares are merged into the
        current round and the share key scheduled for deletion only when
        ``can_delete_shares`` holds.
    """
    commands: List[Command] = [
        ("smove", keys.blocks_pending, terminal_set(keys, round_.category), round_.serialized)
    ]
    to_delete: List[str] = []
    if round_.can_delete_shares:
        for worker, shares in (round_.worker_shares or {}).items():
            commands.append(("hincrbyfloat", keys.shares_current, worker, str(shares)))
        to_delete.append(keys.shares_round(round_.height))
    return commands, to_delete


class RoundSweeper:
    """Moves ORPHAN/KICKED rounds to their terminal sets in one MULTI."""

    def __init__(self, context: PoolContext, redis: RedisClient):
        self.context = context
        self.redis = redis
        self.keys = PoolKeys(context.coin)
        self.logger = logger.bind(service="round_sweeper", coin=context.coin)

    def plan(self, rounds: Sequence[Round]) -> Tuple[List[Command], List[Round]]:
        """
        Build the sweep batch.

        Returns:
            ``(commands, generate_rounds)``; only GENERATE rounds continue down
            the pipeline.
        """
        moves: List[Command] = []
        merges: List[Command] = []
        to_delete: List[str] = []
        remaining: List[Round] = []

        for round_ in rounds:
            if round_.category is RoundCategory.GENERATE:
                remaining.append(round_)
            elif round_.category in (RoundCategory.ORPHAN, RoundCategory.KICKED):
                round_.can_delete_shares = can_delete_shares(round_, rounds)
                commands, keys = retire_invalid_round(self.keys, round_)
                moves.append(commands[0])
                # Rounds at one height share a record; merge it once
                if any(key in to_delete for key in keys):
                    continue
                merges.extend(commands[1:])
                to_delete.extend(keys)
            else:
                self.logger.warning("Unresolved round reached sweeper", token=round_.serialized)

        commands = moves + merges
        if to_delete:
            commands.append(("del", *to_delete))
        return commands, remaining

    async def sweep(self, rounds: Sequence[Round], stats: CycleStats) -> Tuple[List[Command], List[Round]]:
        """
        Apply the sweep batch.

        Raises:
            StoreError: the batch failed; no payment has been attempted yet
        """
        commands, remaining = self.plan(rounds)
        if commands:
            self.logger.info(
                "Retiring invalid rounds",
                rounds=len(rounds) - len(remaining),
                commands=len(commands)
            )
            with stats.timed("redis"):
                await self.redis.execute_batch(commands)
        return commands, remaining
