import asyncio

import aiohttp
import pytest

from fakes import FakeSession
from solfarm_sync import http


def test_fetch_json_returns_decoded_body():
    session = FakeSession({"ok": True})
    data = asyncio.run(http.fetch_json("https://api.raydium.io/x.json", session=session))
    assert data == {"ok": True}
    assert session.calls[0]["method"] == "GET"


def test_fetch_json_retries_then_succeeds():
    session = FakeSession(aiohttp.ClientError("reset"), {"ok": 1})
    data = asyncio.run(
        http.fetch_json("http://catalog.test/farms", session=session, attempts=2, backoff=0)
    )
    assert data == {"ok": 1}
    assert len(session.calls) == 2


def test_http_error_status_raises_after_attempts():
    session = FakeSession(({"message": "down"}, 503))
    with pytest.raises(http.HTTPError):
        asyncio.run(http.fetch_json("http://catalog.test/farms", session=session, attempts=2, backoff=0))
    assert len(session.calls) == 2


def test_post_json_rpc_returns_result_member():
    session = FakeSession({"jsonrpc": "2.0", "id": 7, "result": {"value": 5}})
    request = http.JsonRpcRequest("getSlot", attempts=1)
    assert asyncio.run(http.post_json_rpc("http://node.test", request, session=session)) == {"value": 5}
    body = session.calls[0]["json"]
    assert body["jsonrpc"] == "2.0"
    assert body["method"] == "getSlot"
    assert body["params"] == []
    assert session.calls[0]["headers"]["Content-Type"] == "application/json"


def test_post_json_rpc_error_member_raises():
    session = FakeSession({"jsonrpc": "2.0", "id": 1, "error": {"message": "bad"}})
    with pytest.raises(http.HTTPError):
        asyncio.run(http.post_json_rpc("http://node.test", http.JsonRpcRequest("getSlot"), session=session))


def test_host_retry_config_has_defaults():
    attempts, backoff = http.host_retry_config("https://unknown.example")
    assert attempts >= 1
    assert backoff >= 0


def test_circuit_opens_after_repeated_failures():
    session = FakeSession(aiohttp.ClientError("down"))

    async def hammer():
        for _ in range(20):
            try:
                await http.fetch_json("http://flaky.test/x", session=session, attempts=1, backoff=0)
            except http.HostCircuitOpenError:
                return True
            except aiohttp.ClientError:
                continue
        return False

    assert asyncio.run(hammer()) is True
