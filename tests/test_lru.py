import asyncio

import pytest

from solfarm_sync.lru import TTLCache


def test_entries_expire():
    now = [0.0]
    cache = TTLCache(maxsize=4, ttl=10, timer=lambda: now[0])
    cache.set("a", 1)
    assert cache.get("a") == 1
    now[0] = 11.0
    assert cache.get("a") is None
    assert "a" not in cache


def test_get_or_set_async_single_flight():
    cache = TTLCache(ttl=60)
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0.01)
        return "value"

    async def main():
        return await asyncio.gather(*(cache.get_or_set_async("k", factory) for _ in range(4)))

    assert asyncio.run(main()) == ["value"] * 4
    assert len(calls) == 1
    assert cache.get("k") == "value"


def test_failures_are_not_cached():
    cache = TTLCache(ttl=60)

    async def fail():
        raise RuntimeError("nope")

    async def ok():
        return 5

    async def main():
        with pytest.raises(RuntimeError):
            await cache.get_or_set_async("k", fail)
        return await cache.get_or_set_async("k", ok)

    assert asyncio.run(main()) == 5
