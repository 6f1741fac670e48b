"""
JSON-RPC client for a bitcoin-style coin daemon.

This service provides:
- Single commands and ordered batch commands over one HTTP round trip
- Explicit per-call timeouts so an unresponsive daemon fails the cycle
- Decimal parsing of numeric results (no float rounding of amounts)
"""

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import structlog

from pool_payments.core.config import DaemonConfig, settings
from pool_payments.core.exceptions import DaemonError


logger = structlog.get_logger(__name__)

# Daemon error codes the payment pipeline reacts to
RPC_INVALID_ADDRESS_OR_KEY = -5
RPC_WALLET_INSUFFICIENT_FUNDS = -6


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(payload: Any) -> str:
    return json.dumps(payload, default=_json_default)


@dataclass
class RpcResult:
    """Outcome of one call inside a (batch) request."""
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def error_code(self) -> Optional[int]:
        if not self.error:
            return None
        code = self.error.get("code")
        return int(code) if code is not None else None

    @property
    def ok(self) -> bool:
        return self.error is None


class DaemonClient:
    """Async JSON-RPC client owned by a single pool."""

    def __init__(self, config: DaemonConfig, timeout: Optional[float] = None):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.rpc_timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._next_id = 0
        self.logger = logger.bind(service="daemon_client", daemon=config.url)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            auth = aiohttp.BasicAuth(self.config.user, self.config.password)
            self._session = aiohttp.ClientSession(
                auth=auth,
                timeout=self.timeout,
                json_serialize=_dumps
            )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _request_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def _post(self, payload: Any) -> Any:
        await self.connect()
        try:
            async with self._session.post(self.config.url, json=payload) as response:
                body = await response.text()
        except asyncio.TimeoutError as e:
            self.logger.error("Daemon request timed out", timeout=self.timeout.total)
            raise DaemonError("Daemon request timed out") from e
        except aiohttp.ClientError as e:
            self.logger.error("Daemon request failed", error=str(e))
            raise DaemonError(f"Daemon request failed: {e}") from e

        try:
            return json.loads(body, parse_float=Decimal)
        except json.JSONDecodeError as e:
            raise DaemonError(
                "Daemon returned a non-JSON response",
                details={"status": response.status, "body": body[:200]}
            ) from e

    @staticmethod
    def _to_result(entry: Any) -> RpcResult:
        if not isinstance(entry, dict):
            return RpcResult(error={"code": None, "message": "Malformed response entry"})
        return RpcResult(result=entry.get("result"), error=entry.get("error"))

    async def cmd(self, method: str, params: Optional[List[Any]] = None) -> RpcResult:
        """
        Issue one RPC call.

        RPC-level errors are returned in ``RpcResult.error``; transport failures raise.
        """
        payload = {"method": method, "params": params or [], "id": self._request_id()}
        data = await self._post(payload)
        return self._to_result(data)

    async def batch_cmd(self, commands: Sequence[Tuple[str, List[Any]]]) -> List[RpcResult]:
        """
        Issue an ordered batch of RPC calls in one round trip.

        Args:
            commands: ``(method, params)`` pairs

        Returns:
            One RpcResult per command, in command order

        Raises:
            DaemonError: transport failure or a response that cannot be matched to the request
        """
        if not commands:
            return []

        ids = []
        payload = []
        for method, params in commands:
            request_id = self._request_id()
            ids.append(request_id)
            payload.append({"method": method, "params": list(params), "id": request_id})

        data = await self._post(payload)
        if not isinstance(data, list):
            raise DaemonError("Daemon batch response is not a list", details={"response": str(data)[:200]})

        by_id = {entry.get("id"): entry for entry in data if isinstance(entry, dict)}
        missing = [request_id for request_id in ids if request_id not in by_id]
        if missing:
            raise DaemonError(
                "Daemon batch response is missing entries",
                details={"expected": len(ids), "received": len(data)}
            )

        return [self._to_result(by_id[request_id]) for request_id in ids]
