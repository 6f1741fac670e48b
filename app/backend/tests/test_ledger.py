"""
Test the final ledger commit and its recovery artifacts.
"""

import json
from decimal import Decimal

import pytest

from pool_payments.core.exceptions import CommitError
from pool_payments.services.payments.core.controller import CycleController
from pool_payments.services.payments.core.types import CycleStage, CycleStats, Round, RoundCategory, WorkerAccount
from pool_payments.services.payments.ledger.committer import LedgerCommitter
from pool_payments.services.payments.ledger.recovery import RecoveryStore
from pool_payments.store.keys import PoolKeys


KEYS = PoolKeys("TST")


@pytest.fixture
def recovery(tmp_path):
    return RecoveryStore(tmp_path, "TST")


@pytest.fixture
def controller():
    return CycleController("TST")


@pytest.fixture
def committer(context, redis, controller, recovery):
    return LedgerCommitter(context, redis, controller, recovery)


def _confirmed_round(height=100):
    round_ = Round.create(f"h{height}", f"t{height}", height)
    round_.category = RoundCategory.GENERATE
    round_.reward = Decimal("0.5")
    return round_


def _paid_workers():
    return {
        "A": WorkerAccount(
            key="A",
            balance=200_000_000,
            reward=37_500_000,
            sent=Decimal("2.37500000"),
            sent_units=237_500_000,
            balance_change=-200_000_000,
        ),
        "B": WorkerAccount(key="B", reward=12_500_000, balance_change=12_500_000),
    }


def test_build_commands_order(committer):
    round_ = _confirmed_round()
    commands = committer.build_commands([round_], _paid_workers())

    assert commands == [
        ("smove", KEYS.blocks_pending, KEYS.blocks_confirmed, round_.serialized),
        ("hincrbyfloat", KEYS.balances, "A", "-2.00000000"),
        ("hincrbyfloat", KEYS.balances, "B", "0.12500000"),
        ("hincrbyfloat", KEYS.payouts, "A", "2.37500000"),
        ("del", KEYS.shares_round(100)),
        ("hincrbyfloat", KEYS.stats, "totalPaid", "2.37500000"),
    ]


def test_build_commands_skips_unchanged_workers(committer):
    workers = {"A": WorkerAccount(key="A", balance=5)}
    assert committer.build_commands([], workers) == []


@pytest.mark.asyncio
async def test_commit_applies_balances(committer, redis, recovery):
    round_ = _confirmed_round()
    redis.sadd(KEYS.blocks_pending, round_.serialized)
    redis.hset(KEYS.balances, {"A": "2.0"})
    redis.hset(KEYS.shares_round(100), {"A": "3", "B": "1"})
    recovery.record_intent({"amounts": {"A": "2.375"}, "txid": "txid"})

    await committer.commit([round_], _paid_workers(), True, CycleStats())

    balances = redis.hash(KEYS.balances)
    assert Decimal(balances["A"]) == 0
    assert Decimal(balances["B"]) == Decimal("0.125")
    assert Decimal(redis.hash(KEYS.payouts)["A"]) == Decimal("2.375")
    assert Decimal(redis.hash(KEYS.stats)["totalPaid"]) == Decimal("2.375")
    assert redis.members(KEYS.blocks_confirmed) == {round_.serialized}
    assert KEYS.shares_round(100) not in redis.data
    assert len(redis.batches) == 1
    assert not recovery.has_intent()


@pytest.mark.asyncio
async def test_commit_failure_after_payment_disables_pool(committer, redis, controller, recovery):
    redis.fail_on.add("hincrbyfloat")
    recovery.record_intent({"amounts": {"A": "2.375"}, "txid": "txid"})
    workers = _paid_workers()

    with pytest.raises(CommitError):
        await committer.commit([_confirmed_round()], workers, True, CycleStats())

    assert controller.is_disabled()
    assert controller.stage is CycleStage.DISABLED
    assert recovery.has_intent()

    artifact = json.loads(recovery.commands_path.read_text())
    expected = committer.build_commands([_confirmed_round()], workers)
    assert artifact == [list(command) for command in expected]
    assert recovery.commands_path.name == "TST_finalRedisCommands.txt"


@pytest.mark.asyncio
async def test_commit_failure_without_payment_only_aborts(committer, redis, controller, recovery):
    redis.fail_on.add("smove")
    workers = {"B": WorkerAccount(key="B", reward=12_500_000, balance_change=12_500_000)}

    with pytest.raises(CommitError):
        await committer.commit([_confirmed_round()], workers, False, CycleStats())

    assert not controller.is_disabled()
    assert not recovery.commands_path.exists()


def test_recovery_intent_lifecycle(recovery):
    assert not recovery.has_intent()
    assert recovery.load_intent() is None

    recovery.record_intent({"amounts": {"addr": "1.5"}})
    intent = recovery.load_intent()
    assert intent["coin"] == "TST"
    assert intent["amounts"] == {"addr": "1.5"}

    recovery.clear_intent()
    assert not recovery.has_intent()
    recovery.clear_intent()


def test_recovery_artifact_unwritable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = RecoveryStore(blocker, "TST")
    assert store.write_commands([("del", "key")]) is None


def test_controller_stays_disabled():
    controller = CycleController("TST")
    controller.enter(CycleStage.COLLECTING)
    assert controller.in_cycle
    controller.finish()
    assert controller.stage is CycleStage.IDLE

    controller.disable("broken")
    controller.enter(CycleStage.COLLECTING)
    controller.finish()
    assert controller.is_disabled()
    assert controller.disabled_reason == "broken"
    assert not controller.in_cycle
