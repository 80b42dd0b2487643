import asyncio

import pytest

from fakes import FakeSession
from solfarm_sync import block_time
from solfarm_sync.block_time import BlockTimeEstimator, estimate_slot_duration, slot_rate_from_samples

SAMPLES = [
    {"numSlots": 60, "numTransactions": 1000, "samplePeriodSecs": 60, "slot": 3},
    {"numSlots": 60, "numTransactions": 900, "samplePeriodSecs": 60, "slot": 2},
    {"numSlots": 60, "numTransactions": 800, "samplePeriodSecs": 60, "slot": 1},
]


def test_no_endpoint_returns_default_without_network(monkeypatch):
    async def boom(*_a, **_k):
        raise AssertionError("network must not be touched")

    monkeypatch.setattr(block_time, "post_json_rpc", boom)
    assert asyncio.run(estimate_slot_duration(None)) == 2
    assert asyncio.run(estimate_slot_duration("  ")) == 2


def test_average_of_sixty_slot_samples_is_one(monkeypatch):
    async def fake_rpc(url, request, *, session=None):
        assert request.method == "getRecentPerformanceSamples"
        assert list(request.params) == [100]
        return SAMPLES

    monkeypatch.setattr(block_time, "post_json_rpc", fake_rpc)
    assert asyncio.run(estimate_slot_duration("http://node.test")) == 1.0


def test_slot_rate_from_samples_ignores_garbage():
    assert slot_rate_from_samples([]) is None
    assert slot_rate_from_samples([{"numSlots": "x"}, {"numSlots": True}]) is None
    assert slot_rate_from_samples([{"numSlots": 120}, {"foo": 1}]) == 1.0


def test_slot_rate_divides_by_every_returned_sample():
    samples = [{"numSlots": 180}, {"numSlots": None}, "garbage"]
    assert slot_rate_from_samples(samples) == 1.0


def test_estimator_forwards_retry_settings(monkeypatch):
    seen = []

    async def fake_rpc(url, request, *, session=None):
        seen.append(request)
        return SAMPLES

    monkeypatch.setattr(block_time, "post_json_rpc", fake_rpc)
    estimator = BlockTimeEstimator(timeout=3.0, attempts=5, backoff=0.75)
    asyncio.run(estimator.estimate("http://node.test"))
    assert seen[0].attempts == 5
    assert seen[0].backoff == 0.75
    assert seen[0].timeout == 3.0


def test_estimator_posts_json_rpc_and_caches():
    session = FakeSession({"jsonrpc": "2.0", "id": 1, "result": SAMPLES})
    estimator = BlockTimeEstimator(session=session, clock=lambda: 42.0)

    async def main():
        first = await estimator.estimate("http://node.test")
        second = await estimator.estimate("http://node.test")
        return first, second

    first, second = asyncio.run(main())
    assert first.slot_rate == 1.0
    assert first.fallback is False
    assert first.sampled_at == 42.0
    assert second is first
    assert len(session.calls) == 1
    body = session.calls[0]["json"]
    assert body["method"] == "getRecentPerformanceSamples"
    assert body["params"] == [100]
    assert session.calls[0]["method"] == "POST"


def test_failure_falls_back_and_is_not_cached():
    session = FakeSession(
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}},
        {"jsonrpc": "2.0", "id": 2, "result": [{"numSlots": 150}]},
    )
    estimator = BlockTimeEstimator(session=session)

    async def main():
        return await estimator.estimate("http://node.test"), await estimator.estimate("http://node.test")

    failed, recovered = asyncio.run(main())
    assert failed.fallback is True
    assert failed.slot_rate == 2.0
    assert recovered.fallback is False
    assert recovered.slot_rate == 2.5


def test_empty_samples_use_fallback():
    estimator = BlockTimeEstimator(session=FakeSession({"result": []}), fallback=2.0)
    estimate = asyncio.run(estimator.estimate("http://node.test"))
    assert estimate.fallback is True
    assert estimate.slot_rate == 2.0


def test_concurrent_callers_share_one_request(monkeypatch):
    calls = []

    async def slow_rpc(url, request, *, session=None):
        calls.append(url)
        await asyncio.sleep(0.01)
        return SAMPLES

    monkeypatch.setattr(block_time, "post_json_rpc", slow_rpc)
    estimator = BlockTimeEstimator()

    async def main():
        return await asyncio.gather(*(estimator.estimate("http://node.test") for _ in range(5)))

    results = asyncio.run(main())
    assert {r.slot_rate for r in results} == {1.0}
    assert calls == ["http://node.test"]


def test_invalidate_forces_resample(monkeypatch):
    calls = []

    async def fake_rpc(url, request, *, session=None):
        calls.append(url)
        return SAMPLES

    monkeypatch.setattr(block_time, "post_json_rpc", fake_rpc)
    estimator = BlockTimeEstimator()

    async def main():
        await estimator.estimate("http://node.test")
        estimator.invalidate("http://node.test")
        await estimator.estimate("http://node.test")

    asyncio.run(main())
    assert len(calls) == 2


@pytest.mark.parametrize("endpoint", [None, ""])
def test_estimate_without_endpoint_is_fallback(endpoint):
    estimate = asyncio.run(BlockTimeEstimator(fallback=3.0).estimate(endpoint))
    assert estimate.fallback is True
    assert estimate.slot_rate == 3.0
    assert estimate.endpoint is None
