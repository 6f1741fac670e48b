"""
Pool setup: verifies the daemon owns the payout address and probes coin precision.
"""

import asyncio
from decimal import Decimal
from typing import Any, Tuple

import structlog

from pool_payments.core.config import PoolConfig
from pool_payments.core.exceptions import PoolSetupError
from pool_payments.services.daemon_client import DaemonClient
from .core.types import PoolContext


logger = structlog.get_logger(__name__)


def probe_precision(balance: Any) -> Tuple[int, int]:
    """
    Derive ``(magnitude, decimal_places)`` from a getbalance result.

    The daemon always renders balances with the coin's full precision
    (e.g. ``0.00000000``), so the exponent of the parsed Decimal gives the
    number of decimal places.

    Raises:
        ValueError: the value carries no fractional digits
    """
    if not isinstance(balance, Decimal):
        raise ValueError(f"Balance is not a decimal value: {balance!r}")
    exponent = balance.as_tuple().exponent
    if not isinstance(exponent, int) or exponent >= 0:
        raise ValueError(f"Cannot infer precision from balance {balance}")
    places = -exponent
    return 10 ** places, places


async def _check_address(coin: str, address: str, daemon: DaemonClient) -> None:
    result = await daemon.cmd("validateaddress", [address])
    if not result.ok:
        raise PoolSetupError(coin, "error with payment processing daemon", {"error": result.error})
    if not isinstance(result.result, dict) or not result.result.get("ismine"):
        raise PoolSetupError(
            coin,
            "daemon does not own pool address - payment processing can not be done with this daemon",
            {"response": result.result}
        )


async def _probe_magnitude(coin: str, daemon: DaemonClient) -> Tuple[int, int]:
    result = await daemon.cmd("getbalance", [])
    if not result.ok:
        raise PoolSetupError(coin, "getbalance failed", {"error": result.error})
    try:
        return probe_precision(result.result)
    except ValueError as e:
        raise PoolSetupError(
            coin,
            "error detecting number of satoshis in a coin",
            {"result": str(result.result)}
        ) from e


async def setup_pool(pool: PoolConfig, daemon: DaemonClient) -> PoolContext:
    """
    Build the pool's immutable context.

    Raises:
        PoolSetupError: the pool must not be scheduled
        DaemonError: the daemon could not be reached
    """
    _, (magnitude, precision) = await asyncio.gather(
        _check_address(pool.coin, pool.address, daemon),
        _probe_magnitude(pool.coin, daemon),
    )
    processing = pool.payment_processing
    context = PoolContext(
        coin=pool.coin,
        address=pool.address,
        magnitude=magnitude,
        precision=precision,
        payment_interval=processing.payment_interval,
        minimum_payment=int(processing.minimum_payment * magnitude),
    )
    logger.info(
        "Payment processing setup complete",
        coin=pool.coin,
        magnitude=magnitude,
        precision=precision,
        minimum_payment=context.minimum_payment,
        interval=processing.payment_interval
    )
    return context
