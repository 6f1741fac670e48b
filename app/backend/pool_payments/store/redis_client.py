"""
Redis client configuration and connection management.

Every stage of the payment cycle talks to Redis through ``execute_batch``,
which runs a list of commands as one MULTI/EXEC transaction.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

import structlog

from pool_payments.core.config import settings
from pool_payments.core.exceptions import StoreError

logger = structlog.get_logger(__name__)

Command = Sequence[Any]


class RedisClient:
    """Async Redis client wrapper owned by a single pool."""

    def __init__(self, url: str, socket_timeout: Optional[float] = None):
        self.url = url
        self.socket_timeout = socket_timeout or settings.redis_socket_timeout
        self._client: Optional[Redis] = None
        self._pool: Optional[redis.ConnectionPool] = None
        self.logger = logger.bind(service="redis_client")

    async def connect(self) -> None:
        """Establish Redis connection."""
        try:
            if self._client is None:
                self._pool = redis.ConnectionPool.from_url(
                    self.url,
                    decode_responses=True,
                    max_connections=4,
                    socket_timeout=self.socket_timeout,
                    socket_connect_timeout=self.socket_timeout,
                    socket_keepalive=True,
                )
                self._client = Redis(connection_pool=self._pool)

                # Test connection
                await self._client.ping()
                self.logger.info("Redis connection established", url=self.url)

        except RedisError as e:
            self.logger.error("Failed to connect to Redis", url=self.url, error=str(e))
            self._client = None
            raise StoreError("Failed to connect to Redis", {"url": self.url}) from e

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
                self.logger.info("Redis connection closed")
            except RedisError as e:
                self.logger.error("Error closing Redis connection", error=str(e))
            finally:
                self._client = None

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis connection health."""
        try:
            if self._client is None:
                return {"status": "disconnected", "error": "No connection"}

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            result = await self._client.ping()
            ping_time = (loop.time() - start_time) * 1000

            return {
                "status": "healthy" if result else "unhealthy",
                "ping_ms": round(ping_time, 2),
            }
        except RedisError as e:
            return {"status": "error", "error": str(e)}

    async def execute_batch(
        self,
        commands: List[Command],
        transaction: bool = True
    ) -> List[Any]:
        """
        Run commands as a single MULTI/EXEC batch.

        Args:
            commands: Commands as ``(name, *args)`` sequences, e.g. ``("smembers", key)``
            transaction: Wrap the batch in MULTI/EXEC

        Returns:
            Per-command results in command order

        Raises:
            StoreError: on connection failure or any command error inside the batch
        """
        if not commands:
            return []

        if self._client is None:
            raise StoreError("Redis client not connected", {"url": self.url})

        pipe = self._client.pipeline(transaction=transaction)
        try:
            for command in commands:
                name, *args = command
                pipe.execute_command(str(name).upper(), *args)
            return await pipe.execute()
        except RedisError as e:
            self.logger.error("Redis batch failed", commands=len(commands), error=str(e))
            raise StoreError("Redis batch failed", {"commands": len(commands), "error": str(e)}) from e
        finally:
            await pipe.reset()
