"""
On-disk artifacts that protect against double payment.

Two files per coin live in the recovery directory:

- ``{coin}_payment_intent.json`` is written before ``sendmany`` and removed
  after the ledger commit succeeds. Finding it at the start of a cycle means
  a payment may have gone out without its ledger update, so the pool must not
  run again until an operator reconciles it.
- ``{coin}_finalRedisCommands.txt`` holds the exact Redis batch that failed to
  apply after a payment, for manual replay.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from pool_payments.store.redis_client import Command


logger = structlog.get_logger(__name__)


class RecoveryStore:
    def __init__(self, directory: Path, coin: str):
        self.directory = Path(directory)
        self.coin = coin
        self.logger = logger.bind(service="recovery_store", coin=coin)

    @property
    def intent_path(self) -> Path:
        return self.directory / f"{self.coin}_payment_intent.json"

    @property
    def commands_path(self) -> Path:
        return self.directory / f"{self.coin}_finalRedisCommands.txt"

    def _write_atomic(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, default=str)
        tmp.replace(path)

    def has_intent(self) -> bool:
        return self.intent_path.exists()

    def load_intent(self) -> Optional[Dict[str, Any]]:
        if not self.intent_path.exists():
            return None
        with self.intent_path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def record_intent(self, payload: Dict[str, Any]) -> None:
        record = dict(payload)
        record.setdefault("coin", self.coin)
        record["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._write_atomic(self.intent_path, record)

    def clear_intent(self) -> None:
        if self.intent_path.exists():
            self.intent_path.unlink()

    def write_commands(self, commands: List[Command]) -> Optional[Path]:
        """
        Persist a failed ledger batch verbatim.

        Returns:
            The artifact path, or None if it could not be written
        """
        try:
            self._write_atomic(self.commands_path, [list(command) for command in commands])
        except OSError as e:
            self.logger.critical(
                "Could not write recovery commands, ledger must be reconciled by hand",
                path=str(self.commands_path),
                error=str(e)
            )
            return None
        return self.commands_path
