"""
Payment processing pipeline.

Modular components:
- services.payments.core - Processor, controller and types
- services.payments.rounds - Round loading, classification, allocation and sweeping
- services.payments.disbursement - sendmany batching and fee retry
- services.payments.ledger - Final commit and recovery artifacts
"""

from .core import CycleController, CycleStage, CycleStats, PoolContext
from .core.processor import PaymentProcessor
from .setup import setup_pool

__all__ = [
    "CycleController",
    "CycleStage",
    "CycleStats",
    "PaymentProcessor",
    "PoolContext",
    "setup_pool",
]
