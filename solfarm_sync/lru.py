"""TTL cache with single-flight async population."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Hashable

from cachetools import TTLCache as _TTLCache


class TTLCache:
    """Thin wrapper over :class:`cachetools.TTLCache` usable from async code.

    Only one task computes a missing key at a time; other callers await the
    same task. Failed computations are not cached.
    """

    def __init__(
        self,
        maxsize: int = 128,
        ttl: float = 60.0,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.maxsize = maxsize
        self.ttl = float(ttl)
        self._data: _TTLCache = _TTLCache(maxsize=maxsize, ttl=self.ttl, timer=timer)
        self._pending: dict[tuple[Hashable, asyncio.AbstractEventLoop], asyncio.Task] = {}
        self._thread_lock = threading.RLock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._thread_lock:
            return self._data.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        with self._thread_lock:
            self._data[key] = value

    def pop(self, key: Hashable, default: Any = None) -> Any:
        with self._thread_lock:
            return self._data.pop(key, default)

    def clear(self) -> None:
        with self._thread_lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._thread_lock:
            return key in self._data

    def __len__(self) -> int:
        with self._thread_lock:
            self._data.expire()
            return len(self._data)

    async def get_or_set_async(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for ``key`` or await ``factory()`` once to fill it."""

        sentinel = object()
        val = self.get(key, sentinel)
        if val is not sentinel:
            return val

        loop = asyncio.get_running_loop()
        pend_key = (key, loop)
        task = self._pending.get(pend_key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[pend_key] = task
            task.add_done_callback(lambda _t: self._pending.pop(pend_key, None))

        val = await asyncio.shield(task)
        self.set(key, val)
        return val


__all__ = ["TTLCache"]
