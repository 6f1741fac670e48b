"""
Main entry point for the payment service.
Sets up every enabled pool and runs one independent scheduler per pool.
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import List, Optional

import structlog

from pool_payments.core.config import PoolConfig, load_pool_configs, settings
from pool_payments.core.exceptions import ConfigurationError, DaemonError, PoolSetupError, StoreError
from pool_payments.core.logging import setup_logging
from pool_payments.services.daemon_client import DaemonClient
from pool_payments.services.payments import PaymentProcessor, setup_pool
from pool_payments.store.redis_client import RedisClient
from .payment_scheduler import PaymentScheduler


logger = structlog.get_logger(__name__)


@dataclass
class PoolRuntime:
    """Connections and scheduler owned by one pool."""
    coin: str
    redis: RedisClient
    daemon: DaemonClient
    scheduler: PaymentScheduler

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.daemon.close()
        await self.redis.disconnect()


async def build_pool_runtime(pool: PoolConfig) -> Optional[PoolRuntime]:
    """
    Connect and probe one pool.

    Returns:
        The runtime, or None when the pool must be excluded from scheduling
    """
    daemon = DaemonClient(pool.payment_processing.daemon)
    redis = RedisClient(pool.redis.url)
    try:
        context = await setup_pool(pool, daemon)
        await redis.connect()
    except (PoolSetupError, DaemonError, StoreError) as e:
        logger.error("Pool excluded from payment processing", coin=pool.coin, error=e.message, details=e.details)
        await daemon.close()
        await redis.disconnect()
        return None

    processor = PaymentProcessor(context, redis, daemon)
    scheduler = PaymentScheduler(processor)
    logger.debug(
        "Payment processing configured",
        coin=pool.coin,
        interval=context.payment_interval,
        daemon=pool.payment_processing.daemon.url,
        redis=await redis.health_check()
    )
    return PoolRuntime(coin=pool.coin, redis=redis, daemon=daemon, scheduler=scheduler)


class SchedulerMain:
    """Main payment service coordinator."""

    def __init__(self):
        self.pools: List[PoolRuntime] = []
        self._stopped = asyncio.Event()
        self._shutdown_task: Optional[asyncio.Task] = None

    async def initialize(self, pools: Optional[List[PoolConfig]] = None) -> None:
        pools = load_pool_configs() if pools is None else pools
        if not pools:
            raise ConfigurationError("No pools with payment processing enabled")
        logger.info("Initializing payment service", pools=[p.coin for p in pools])

        runtimes = await asyncio.gather(*(build_pool_runtime(pool) for pool in pools))
        self.pools = [runtime for runtime in runtimes if runtime is not None]

        logger.info(
            "Payment service initialized",
            scheduled=[p.coin for p in self.pools],
            excluded=len(pools) - len(self.pools)
        )

    async def start(self) -> None:
        for runtime in self.pools:
            await runtime.scheduler.start()
        await self._stopped.wait()

    def request_shutdown(self, signum: int) -> None:
        """Schedule a graceful stop from a signal handler."""
        if self._shutdown_task is None:
            logger.info("Received signal, shutting down", signal=signum)
            self._shutdown_task = asyncio.create_task(self.stop())

    async def stop(self) -> None:
        logger.info("Stopping payment service")
        await asyncio.gather(*(runtime.close() for runtime in self.pools), return_exceptions=True)
        self._stopped.set()
        logger.info("Payment service stopped")


async def main() -> None:
    """Main function to run the payment service."""
    setup_logging()
    logger.info("Starting payment service", version=settings.app_version, environment=settings.environment)

    service = SchedulerMain()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, service.request_shutdown, signum)

    try:
        await service.initialize()
        if not service.pools:
            logger.warning("No pools available for payment processing")
            return
        await service.start()
    except ConfigurationError as e:
        logger.error("Payment service not started", error=e.message)
    finally:
        if service._shutdown_task is not None:
            await service._shutdown_task
        if not service._stopped.is_set():
            await service.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
