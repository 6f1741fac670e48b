"""
Redis key building and round token encoding for one coin namespace.
"""

from dataclasses import dataclass
from typing import Tuple


SEPARATOR = ":"


@dataclass(frozen=True)
class PoolKeys:
    """Builds every Redis key the payment pipeline touches for one coin."""
    coin: str

    def build(self, *parts: object) -> str:
        return SEPARATOR.join([self.coin, *(str(p) for p in parts)])

    @property
    def balances(self) -> str:
        return self.build("balances")

    @property
    def payouts(self) -> str:
        return self.build("payouts")

    @property
    def stats(self) -> str:
        return self.build("stats")

    @property
    def blocks_pending(self) -> str:
        return self.build("blocksPending")

    @property
    def blocks_confirmed(self) -> str:
        return self.build("blocksConfirmed")

    @property
    def blocks_orphaned(self) -> str:
        return self.build("blocksOrphaned")

    @property
    def blocks_kicked(self) -> str:
        return self.build("blocksKicked")

    @property
    def shares_current(self) -> str:
        return self.build("shares", "roundCurrent")

    def shares_round(self, height: int) -> str:
        return self.build("shares", f"round{height}")


def encode_round_token(block_hash: str, tx_hash: str, height: int) -> str:
    """Serialize a round as ``hash:txhash:height``."""
    return SEPARATOR.join([block_hash, tx_hash, str(height)])


def decode_round_token(token: str) -> Tuple[str, str, int]:
    """
    Parse a ``hash:txhash:height`` token.

    Raises:
        ValueError: token does not have exactly three parts or height is not an integer
    """
    parts = token.split(SEPARATOR)
    if len(parts) != 3:
        raise ValueError(f"Malformed round token: {token!r}")
    block_hash, tx_hash, height = parts
    return block_hash, tx_hash, int(height)
