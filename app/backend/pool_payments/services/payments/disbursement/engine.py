"""
Disbursement engine: pays out accumulated balances with one sendmany call.

Deal with amounts in smallest units as much as possible; display units are
only produced for the daemon call and for values stored for humans.
"""

import math
from decimal import Decimal
from typing import Dict, Optional

import structlog

from pool_payments.core.exceptions import DaemonError, PaymentError, PaymentOutcomeUnknownError
from pool_payments.services.address_resolver import AddressResolver
from pool_payments.services.daemon_client import RPC_WALLET_INSUFFICIENT_FUNDS, DaemonClient
from ..core.types import CycleStats, PaymentBatch, PoolContext, WorkerAccount
from ..ledger.recovery import RecoveryStore


logger = structlog.get_logger(__name__)

DEFAULT_WITHHOLD_STEP = Decimal("0.01")
MAX_WITHHOLD = Decimal(1)


def build_batch(
    context: PoolContext,
    workers: Dict[str, WorkerAccount],
    resolver: AddressResolver,
    withhold_percent: Decimal
) -> PaymentBatch:
    """
    Decide, for the given withhold fraction, what every worker is sent.

    Workers are updated in place with ``sent``, ``sent_units`` and
    ``balance_change``; the returned batch holds the daemon amounts.
    """
    batch = PaymentBatch(withhold_percent=withhold_percent)
    keep = Decimal(1) - withhold_percent

    for worker in workers.values():
        to_send = max(math.floor(Decimal(worker.balance + worker.reward) * keep), 0)

        if worker.address is None:
            worker.address = resolver.resolve(worker.key)

        if to_send > 0 and to_send >= context.minimum_payment and worker.address:
            amount = context.units_to_coins(to_send)
            batch.amounts[worker.address] = batch.amounts.get(worker.address, Decimal(0)) + amount
            batch.total_units += to_send
            worker.sent = amount
            worker.sent_units = to_send
            worker.balance_change = -min(worker.balance, to_send)
        else:
            if to_send >= context.minimum_payment and to_send > 0:
                logger.warning("No payout address for worker, accruing instead", worker=worker.key)
            worker.sent = Decimal(0)
            worker.sent_units = 0
            # Unpaid workers pay no fee share; the whole reward accrues
            worker.balance_change = worker.reward

    return batch


def accrue_all(workers: Dict[str, WorkerAccount]) -> None:
    """Credit every reward to the balance without sending anything."""
    for worker in workers.values():
        worker.sent = Decimal(0)
        worker.sent_units = 0
        worker.balance_change = worker.reward


class DisbursementEngine:
    """
    Builds and submits the payment batch.

    When the wallet cannot cover the transaction fee the daemon answers
    sendmany with an insufficient-funds error; the whole batch is then
    recomputed with a larger withhold fraction and resubmitted until it goes
    through or the fraction reaches 1.0.
    """

    def __init__(
        self,
        context: PoolContext,
        daemon: DaemonClient,
        recovery: RecoveryStore,
        resolver: Optional[AddressResolver] = None,
        withhold_step: Decimal = DEFAULT_WITHHOLD_STEP
    ):
        self.context = context
        self.daemon = daemon
        self.recovery = recovery
        self.resolver = resolver or AddressResolver(context.address)
        self.withhold_step = withhold_step
        self.logger = logger.bind(service="disbursement_engine", coin=context.coin)

    async def disburse(
        self,
        workers: Dict[str, WorkerAccount],
        pool_account: Optional[str],
        stats: CycleStats
    ) -> PaymentBatch:
        """
        Pay every worker whose amount reaches the minimum payment.

        Returns:
            The final batch; ``batch.txid`` is set iff funds were sent

        Raises:
            PaymentError: sendmany failed; no funds were sent
            PaymentOutcomeUnknownError: the daemon could not confirm whether sendmany ran
        """
        withhold = Decimal(0)
        attempts = 0

        while True:
            if withhold >= MAX_WITHHOLD:
                self.recovery.clear_intent()
                accrue_all(workers)
                stats.degraded = True
                stats.withhold_percent = withhold
                self.logger.error(
                    "Withhold reached 100%, nothing sent; rewards accrued to balances",
                    attempts=attempts
                )
                return PaymentBatch(withhold_percent=withhold, attempts=attempts, degraded=True)

            batch = build_batch(self.context, workers, self.resolver, withhold)
            batch.attempts = attempts
            if batch.is_empty:
                self.recovery.clear_intent()
                self.logger.debug("No payments due this cycle")
                return batch

            self.recovery.record_intent({
                "account": pool_account or "",
                "amounts": {address: str(amount) for address, amount in batch.amounts.items()},
                "withhold_percent": str(withhold),
                "attempt": attempts + 1,
            })

            try:
                with stats.timed("rpc"):
                    result = await self.daemon.cmd("sendmany", [pool_account or "", batch.amounts])
            except DaemonError as e:
                raise PaymentOutcomeUnknownError(
                    "sendmany did not return; payment state unknown",
                    {"error": e.message, "recipients": len(batch.amounts)}
                ) from e
            attempts += 1
            batch.attempts = attempts

            if result.error_code == RPC_WALLET_INSUFFICIENT_FUNDS:
                withhold = min(withhold + self.withhold_step, MAX_WITHHOLD)
                self.logger.warning(
                    "Not enough funds to cover the tx fees for sending out payments, "
                    "decreasing rewards and retrying",
                    withhold_percent=f"{withhold * 100}%",
                    attempts=attempts
                )
                continue

            if not result.ok:
                self.recovery.clear_intent()
                self.logger.error(
                    "Error trying to send payments with RPC sendmany",
                    error=result.error,
                    account=pool_account,
                    recipients=len(batch.amounts)
                )
                raise PaymentError("sendmany failed", {"error": result.error})

            batch.txid = str(result.result) if result.result is not None else ""
            self.recovery.record_intent({
                "account": pool_account or "",
                "amounts": {address: str(amount) for address, amount in batch.amounts.items()},
                "withhold_percent": str(withhold),
                "attempt": attempts,
                "txid": batch.txid,
            })

            stats.workers_paid = sum(1 for w in workers.values() if w.sent_units > 0)
            stats.total_sent = self.context.units_to_coins(batch.total_units)
            stats.withhold_percent = withhold
            stats.payment_txid = batch.txid
            self.logger.info(
                "Sent out payments",
                total=str(stats.total_sent),
                workers=stats.workers_paid,
                txid=batch.txid
            )
            if withhold > 0:
                self.logger.warning(
                    "Had to withhold part of the reward from miners to cover transaction fees. "
                    "Fund pool wallet with coins to prevent this from happening",
                    withhold_percent=f"{withhold * 100}%"
                )
            return batch
