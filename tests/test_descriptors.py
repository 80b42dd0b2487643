import asyncio

from solfarm_sync.descriptors import DescriptorSource
from solfarm_sync.exceptions import CatalogFetchError
from solfarm_sync.types import FarmDescriptor

A = FarmDescriptor(id="A", pool_id="PA", reward_mints=())
B = FarmDescriptor(id="B", pool_id="PB", reward_mints=(), upcoming=True)


def _fetcher(*results):
    queue = list(results)
    calls = []

    async def fetch():
        calls.append(1)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    fetch.calls = calls
    return fetch


def test_refresh_replaces_catalog():
    source = DescriptorSource(_fetcher((A,), (A, B)))

    async def main():
        first = await source.refresh()
        second = await source.refresh()
        return first, second

    first, second = asyncio.run(main())
    assert first.ok and first.descriptors == (A,)
    assert second.descriptors == (A, B)
    assert source.current == (A, B)
    assert source.last_error is None


def test_failed_refresh_keeps_previous_set():
    source = DescriptorSource(_fetcher((A,), CatalogFetchError("HTTP 500")))

    async def main():
        await source.refresh()
        return await source.refresh()

    result = asyncio.run(main())
    assert result.ok is False
    assert result.descriptors == (A,)
    assert "HTTP 500" in result.error
    assert source.current == (A,)
    assert source.last_error == result.error


def test_unexpected_error_is_contained():
    source = DescriptorSource(_fetcher(RuntimeError("boom")))
    result = asyncio.run(source.refresh())
    assert result.ok is False
    assert result.descriptors == ()
    assert source.loaded is False


def test_get_loads_once():
    fetch = _fetcher((A,), (B,))
    source = DescriptorSource(fetch)

    async def main():
        await source.get()
        return await source.get()

    assert asyncio.run(main()) == (A,)
    assert len(fetch.calls) == 1


def test_default_fetcher_forwards_retry_settings(monkeypatch):
    from solfarm_sync import descriptors

    seen = {}

    async def fake_fetch(**kwargs):
        seen.update(kwargs)
        return (A,)

    monkeypatch.setattr(descriptors, "fetch_farm_descriptors", fake_fetch)
    source = DescriptorSource(url="https://catalog.test/farms", timeout=4.0, attempts=3, backoff=0.5)
    asyncio.run(source.refresh())
    assert seen == {"url": "https://catalog.test/farms", "timeout": 4.0, "attempts": 3, "backoff": 0.5}


def test_older_refresh_finishing_last_does_not_overwrite_newer():
    release = {}

    async def fetch():
        if not release:
            release["old"] = asyncio.Event()
            await release["old"].wait()
            return (B,)
        return (A,)

    source = DescriptorSource(fetch)

    async def main():
        older = asyncio.create_task(source.refresh())
        while "old" not in release:
            await asyncio.sleep(0)
        newer = await source.refresh()
        release["old"].set()
        return newer, await older

    newer, older = asyncio.run(main())
    assert newer.descriptors == (A,)
    assert older.ok is True
    assert source.current == (A,)
    assert source.last_error is None


def test_older_failure_finishing_last_keeps_error_clear():
    release = {}

    async def fetch():
        if not release:
            release["old"] = asyncio.Event()
            await release["old"].wait()
            raise CatalogFetchError("old run failed")
        return (A,)

    source = DescriptorSource(fetch)

    async def main():
        older = asyncio.create_task(source.refresh())
        while "old" not in release:
            await asyncio.sleep(0)
        await source.refresh()
        release["old"].set()
        return await older

    older = asyncio.run(main())
    assert older.ok is False
    assert older.descriptors == (A,)
    assert source.current == (A,)
    assert source.last_error is None
