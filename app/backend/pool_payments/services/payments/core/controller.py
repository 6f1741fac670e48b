"""
Per-pool cycle controller: owns the current stage and the permanent disable flag.
"""

from typing import Optional

import structlog

from .types import CycleStage


logger = structlog.get_logger(__name__)


class CycleController:
    """
    Tracks which stage a pool's cycle is in and whether the pool is disabled.

    Both the scheduler (before starting a cycle) and the committer (after a
    failed post-payment commit) observe this object. Once disabled it stays
    disabled for the life of the process.
    """

    def __init__(self, coin: str):
        self.coin = coin
        self.stage = CycleStage.IDLE
        self.disabled_reason: Optional[str] = None
        self.logger = logger.bind(service="cycle_controller", coin=coin)

    def enter(self, stage: CycleStage) -> None:
        if self.is_disabled():
            return
        self.logger.debug("Cycle stage", stage=stage.value, previous=self.stage.value)
        self.stage = stage

    def finish(self) -> None:
        """Return to IDLE unless the cycle disabled the pool."""
        if not self.is_disabled():
            self.stage = CycleStage.IDLE

    def disable(self, reason: str) -> None:
        if self.is_disabled():
            return
        self.disabled_reason = reason
        self.stage = CycleStage.DISABLED
        self.logger.error("Payment processing disabled", reason=reason)

    def is_disabled(self) -> bool:
        return self.stage is CycleStage.DISABLED

    @property
    def in_cycle(self) -> bool:
        return self.stage not in (CycleStage.IDLE, CycleStage.DISABLED)
