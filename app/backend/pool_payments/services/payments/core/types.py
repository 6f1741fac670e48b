"""
Types for payment processing.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterator, Optional

from pool_payments.store.keys import decode_round_token, encode_round_token


@dataclass(frozen=True)
class PoolContext:
    """Immutable per-pool parameters, built once by the precision probe."""
    coin: str
    address: str
    magnitude: int
    precision: int
    payment_interval: int
    minimum_payment: int  # smallest units

    def coins_to_units(self, coins) -> int:
        """Display units -> smallest integer units."""
        value = Decimal(str(coins)) * self.magnitude
        return int(value.to_integral_value(rounding=ROUND_HALF_UP))

    def units_to_coins(self, units: int) -> Decimal:
        """Smallest integer units -> display units at the pool's precision."""
        quantum = Decimal(1).scaleb(-self.precision)
        return (Decimal(units) / self.magnitude).quantize(quantum)


class RoundCategory(Enum):
    """Classification of a round after the daemon lookup."""
    PENDING = "pending"
    GENERATE = "generate"
    ORPHAN = "orphan"
    KICKED = "kicked"

    @classmethod
    def from_daemon(cls, category: Optional[str]) -> "RoundCategory":
        """Map a gettransaction detail category; immature/unknown stays pending."""
        if category == "generate":
            return cls.GENERATE
        if category == "orphan":
            return cls.ORPHAN
        return cls.PENDING


@dataclass
class Round:
    """One submitted block's lifecycle record."""
    block_hash: str
    tx_hash: str
    height: int
    serialized: str
    category: RoundCategory = RoundCategory.PENDING
    reward: Optional[Decimal] = None  # display units, set iff GENERATE
    worker_shares: Optional[Dict[str, str]] = None
    can_delete_shares: bool = False

    @classmethod
    def from_token(cls, token: str) -> "Round":
        block_hash, tx_hash, height = decode_round_token(token)
        return cls(block_hash=block_hash, tx_hash=tx_hash, height=height, serialized=token)

    @classmethod
    def create(cls, block_hash: str, tx_hash: str, height: int) -> "Round":
        return cls(
            block_hash=block_hash,
            tx_hash=tx_hash,
            height=height,
            serialized=encode_round_token(block_hash, tx_hash, height),
        )


@dataclass
class WorkerAccount:
    """A worker's ledger view for one cycle. Amounts are smallest units unless noted."""
    key: str
    balance: int = 0
    reward: int = 0
    sent: Decimal = Decimal(0)  # display units
    sent_units: int = 0
    balance_change: int = 0
    address: Optional[str] = None


@dataclass
class PaymentBatch:
    """Address -> display amount for one sendmany attempt."""
    amounts: Dict[str, Decimal] = field(default_factory=dict)
    withhold_percent: Decimal = Decimal(0)
    attempts: int = 0
    total_units: int = 0
    txid: Optional[str] = None
    degraded: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.amounts

    @property
    def sent(self) -> bool:
        return self.txid is not None


class CycleStage(Enum):
    """Stages of the per-pool payment state machine."""
    IDLE = "idle"
    COLLECTING = "collecting"
    RECONCILING = "reconciling"
    ALLOCATING = "allocating"
    SWEEPING = "sweeping"
    DISBURSING = "disbursing"
    COMMITTING = "committing"
    DISABLED = "disabled"


@dataclass
class CycleStats:
    """Statistics for one payment cycle."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    time_redis_ms: float = 0.0
    time_rpc_ms: float = 0.0
    rounds_loaded: int = 0
    rounds_deferred: int = 0
    rounds_generate: int = 0
    rounds_orphan: int = 0
    rounds_kicked: int = 0
    rounds_unresolved: int = 0
    workers_paid: int = 0
    total_sent: Decimal = Decimal(0)
    withhold_percent: Decimal = Decimal(0)
    payment_txid: Optional[str] = None
    degraded: bool = False
    aborted_stage: Optional[str] = None

    @contextmanager
    def timed(self, kind: str) -> Iterator[None]:
        """Accumulate wall time spent in ``redis`` or ``rpc`` calls."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            if kind == "redis":
                self.time_redis_ms += elapsed
            else:
                self.time_rpc_ms += elapsed

    @property
    def total_time_ms(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000
