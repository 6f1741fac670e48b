"""
Test JSON-RPC request building and response matching.
"""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from pool_payments.core.config import DaemonConfig
from pool_payments.core.exceptions import DaemonError
from pool_payments.services.daemon_client import DaemonClient, RpcResult, _dumps
from pool_payments.services.payments.setup import probe_precision


@pytest.fixture
def client():
    return DaemonClient(DaemonConfig(host="127.0.0.1", port=18332, user="rpc", password="secret"))


def test_rpc_result_error_code():
    assert RpcResult(result=1).ok
    assert RpcResult(result=1).error_code is None
    assert RpcResult(error={"code": -6, "message": "Insufficient funds"}).error_code == -6


def test_amounts_serialize_as_numbers():
    payload = json.loads(_dumps({"params": ["", {"addr": Decimal("1.25000000")}]}))
    assert payload["params"][1]["addr"] == 1.25


@pytest.mark.asyncio
async def test_batch_matches_responses_by_id(client, monkeypatch):
    sent = []

    async def fake_post(payload):
        sent.append(payload)
        # Daemons may answer a batch out of order
        return [
            {"id": payload[1]["id"], "result": "account", "error": None},
            {"id": payload[0]["id"], "result": None, "error": {"code": -5, "message": "Invalid"}},
        ]

    monkeypatch.setattr(client, "_post", fake_post)
    results = await client.batch_cmd([("gettransaction", ["tx"]), ("getaccount", ["addr"])])

    assert [entry["method"] for entry in sent[0]] == ["gettransaction", "getaccount"]
    assert results[0].error_code == -5
    assert results[1].result == "account"


@pytest.mark.asyncio
async def test_batch_with_missing_entries(client, monkeypatch):
    async def fake_post(payload):
        return [{"id": payload[0]["id"], "result": 1, "error": None}]

    monkeypatch.setattr(client, "_post", fake_post)
    with pytest.raises(DaemonError):
        await client.batch_cmd([("getbalance", []), ("getbalance", [])])


@pytest.mark.asyncio
async def test_empty_batch_skips_request(client, monkeypatch):
    async def fake_post(payload):
        raise AssertionError("no request expected")

    monkeypatch.setattr(client, "_post", fake_post)
    assert await client.batch_cmd([]) == []


@pytest_asyncio.fixture
async def daemon_server():
    """Local HTTP endpoint answering with raw JSON-RPC bodies."""
    bodies = {
        "getbalance": '{"result": 0.00000000, "error": null, "id": %d}',
        "gettransaction": '{"result": {"details": [{"category": "generate", "amount": 12.50000000}]}, "error": null, "id": %d}',
    }

    async def handle(request):
        payload = await request.json()
        if isinstance(payload, list):
            text = "[" + ",".join(bodies[p["method"]] % p["id"] for p in payload) + "]"
        else:
            text = bodies[payload["method"]] % payload["id"]
        return web.Response(text=text, content_type="application/json")

    app = web.Application()
    app.router.add_post("/", handle)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.mark.asyncio
async def test_balance_parsed_as_decimal(daemon_server):
    async with DaemonClient(DaemonConfig(host=daemon_server.host, port=daemon_server.port)) as client:
        result = await client.cmd("getbalance", [])

    assert isinstance(result.result, Decimal)
    assert result.result.as_tuple().exponent == -8
    assert probe_precision(result.result) == (10 ** 8, 8)


@pytest.mark.asyncio
async def test_batch_amounts_parsed_as_decimal(daemon_server):
    async with DaemonClient(DaemonConfig(host=daemon_server.host, port=daemon_server.port)) as client:
        (tx,) = await client.batch_cmd([("gettransaction", ["tx"])])

    amount = tx.result["details"][0]["amount"]
    assert amount == Decimal("12.50000000")
    assert isinstance(amount, Decimal)


@pytest.mark.asyncio
async def test_unreachable_daemon_raises():
    client = DaemonClient(DaemonConfig(host="127.0.0.1", port=1), timeout=2)
    with pytest.raises(DaemonError):
        await client.cmd("getbalance", [])
    await client.close()
