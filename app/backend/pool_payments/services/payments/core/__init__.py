"""
Core payment processing types.
"""

from .types import (
    CycleStage,
    CycleStats,
    PaymentBatch,
    PoolContext,
    Round,
    RoundCategory,
    WorkerAccount,
)
from .controller import CycleController

__all__ = [
    "CycleController",
    "CycleStage",
    "CycleStats",
    "PaymentBatch",
    "PoolContext",
    "Round",
    "RoundCategory",
    "WorkerAccount",
]
