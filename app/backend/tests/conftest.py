"""
Shared fixtures and in-memory collaborators for payment pipeline tests.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from pool_payments.core.exceptions import DaemonError, StoreError
from pool_payments.services.daemon_client import RpcResult
from pool_payments.services.payments.core.types import PoolContext


POOL_ADDRESS = "pool-address"


class InMemoryRedis:
    """Stands in for RedisClient; applies each batch all-or-nothing."""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.batches: List[List[Sequence[Any]]] = []
        self.fail_on: Set[str] = set()

    # Seeding helpers
    def hset(self, key: str, mapping: Dict[str, Any]) -> None:
        self.data.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def sadd(self, key: str, *members: str) -> None:
        self.data.setdefault(key, set()).update(members)

    def hash(self, key: str) -> Dict[str, str]:
        return dict(self.data.get(key, {}))

    def members(self, key: str) -> Set[str]:
        return set(self.data.get(key, set()))

    async def execute_batch(self, commands, transaction: bool = True) -> List[Any]:
        commands = [tuple(c) for c in commands]
        if any(c[0] in self.fail_on for c in commands):
            raise StoreError("simulated redis failure", {"commands": len(commands)})
        self.batches.append(commands)
        return [self._apply(c) for c in commands]

    def _apply(self, command: Tuple[Any, ...]) -> Any:
        name, *args = command
        if name == "hgetall":
            return dict(self.data.get(args[0], {}))
        if name == "smembers":
            return set(self.data.get(args[0], set()))
        if name == "smove":
            src, dst, member = args
            if member not in self.data.get(src, set()):
                return 0
            self.data[src].discard(member)
            self.data.setdefault(dst, set()).add(member)
            return 1
        if name == "hincrbyfloat":
            key, field, amount = args
            current = Decimal(self.data.get(key, {}).get(field, "0"))
            value = current + Decimal(str(amount))
            self.data.setdefault(key, {})[field] = str(value)
            return value
        if name == "del":
            return sum(1 for key in args if self.data.pop(key, None) is not None)
        raise AssertionError(f"unexpected command {name}")


class ScriptedDaemon:
    """Stands in for DaemonClient with canned responses."""

    def __init__(self):
        self.transactions: Dict[str, RpcResult] = {}
        self.account: Optional[str] = "pool-account"
        self.sendmany_responses: List[Any] = []
        self.sendmany_calls: List[Tuple[str, Dict[str, Decimal]]] = []
        self.batch_calls: List[List[Tuple[str, List[Any]]]] = []
        self.fail_batch = False
        self.responses: Dict[str, RpcResult] = {}

    def add_transaction(self, tx_hash: str, *details: Dict[str, Any]) -> None:
        self.transactions[tx_hash] = RpcResult(result={"details": list(details)})

    def add_error(self, tx_hash: str, code: int, message: str = "error") -> None:
        self.transactions[tx_hash] = RpcResult(error={"code": code, "message": message})

    async def batch_cmd(self, commands):
        commands = [(m, list(p)) for m, p in commands]
        self.batch_calls.append(commands)
        if self.fail_batch:
            raise DaemonError("simulated batch failure")
        results = []
        for method, params in commands:
            if method == "gettransaction":
                results.append(self.transactions.get(
                    params[0], RpcResult(error={"code": -1, "message": "unknown"})
                ))
            elif method == "getaccount":
                results.append(RpcResult(result=self.account))
            else:
                raise AssertionError(f"unexpected batch method {method}")
        return results

    async def cmd(self, method: str, params=None):
        if method == "sendmany":
            account, amounts = params
            self.sendmany_calls.append((account, dict(amounts)))
            response = self.sendmany_responses.pop(0) if self.sendmany_responses else RpcResult(result="txid-1")
            if isinstance(response, Exception):
                raise response
            return response
        if method in self.responses:
            return self.responses[method]
        raise AssertionError(f"unexpected method {method}")


def generate_detail(amount: str, address: str = POOL_ADDRESS) -> Dict[str, Any]:
    return {"address": address, "category": "generate", "amount": Decimal(amount)}


@pytest.fixture
def context() -> PoolContext:
    return PoolContext(
        coin="TST",
        address=POOL_ADDRESS,
        magnitude=10 ** 8,
        precision=8,
        payment_interval=60,
        minimum_payment=100_000_000,
    )


@pytest.fixture
def redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def daemon() -> ScriptedDaemon:
    return ScriptedDaemon()
