"""Slot-rate estimation from node performance samples.

Farm rewards on v3/v5 programs are emitted per slot, so turning them into a
yearly figure needs the real slot production rate of the cluster rather
than the nominal one. The estimate is the average ``numSlots`` across the
most recent performance samples (each covering 60 seconds) divided by 60.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

import aiohttp

from .http import JsonRpcRequest, _env_float, post_json_rpc
from .logging_utils import warn_once_per
from .lru import TTLCache
from .types import BlockTimeEstimate

logger = logging.getLogger(__name__)

FALLBACK_SLOT_RATE = 2.0
PERFORMANCE_SAMPLE_LIMIT = 100
BLOCK_TIME_CACHE_TTL = _env_float("BLOCK_TIME_CACHE_TTL", 60.0)


def _endpoint_url(endpoint: Any) -> Optional[str]:
    if endpoint is None:
        return None
    if isinstance(endpoint, str):
        return endpoint.strip() or None
    url = getattr(endpoint, "url", None)
    if url:
        return str(url)
    return None


def slot_rate_from_samples(samples: Sequence[Any]) -> Optional[float]:
    """Sum of ``numSlots`` over the number of samples returned, per second.

    A sample without a numeric ``numSlots`` still counts in the divisor and
    adds nothing to the sum. ``None`` when no sample carries a slot count.
    """

    total = 0.0
    counted = False
    for sample in samples:
        value = sample.get("numSlots") if isinstance(sample, dict) else None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            total += float(value)
            counted = True
    if not counted:
        return None
    return total / len(samples) / 60


class BlockTimeEstimator:
    """Caches one estimate per endpoint for ``ttl`` seconds.

    Failures are never cached so a recovered node is picked up on the next
    call; concurrent callers for the same endpoint share one request.
    """

    def __init__(
        self,
        *,
        ttl: float = BLOCK_TIME_CACHE_TTL,
        fallback: float = FALLBACK_SLOT_RATE,
        sample_limit: int = PERFORMANCE_SAMPLE_LIMIT,
        timeout: float = 10.0,
        attempts: int | None = None,
        backoff: float | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.fallback = float(fallback)
        self.sample_limit = int(sample_limit)
        self.timeout = float(timeout)
        self.attempts = attempts
        self.backoff = backoff
        self._session = session
        self._clock = clock
        self._cache = TTLCache(maxsize=16, ttl=ttl)

    def _fallback(self, url: Optional[str]) -> BlockTimeEstimate:
        return BlockTimeEstimate(
            slot_rate=self.fallback,
            endpoint=url,
            sampled_at=self._clock(),
            fallback=True,
        )

    async def _sample(self, url: str) -> BlockTimeEstimate:
        request = JsonRpcRequest(
            method="getRecentPerformanceSamples",
            params=[self.sample_limit],
            timeout=self.timeout,
            attempts=self.attempts,
            backoff=self.backoff,
        )
        result = await post_json_rpc(url, request, session=self._session)
        rate = slot_rate_from_samples(result if isinstance(result, list) else [])
        if rate is None:
            raise ValueError("no performance samples returned")
        return BlockTimeEstimate(slot_rate=rate, endpoint=url, sampled_at=self._clock())

    async def estimate(self, endpoint: Any) -> BlockTimeEstimate:
        """Return the slot-rate estimate for ``endpoint``; never raises."""

        url = _endpoint_url(endpoint)
        if url is None:
            return self._fallback(None)
        try:
            return await self._cache.get_or_set_async(url, lambda: self._sample(url))
        except Exception as exc:
            warn_once_per(
                1.0,
                f"block-time-{url}",
                "Performance samples unavailable from %s (%s); using fallback slot rate %.1f",
                url,
                exc,
                self.fallback,
                logger=logger,
            )
            return self._fallback(url)

    def invalidate(self, endpoint: Any = None) -> None:
        url = _endpoint_url(endpoint)
        if url is None:
            self._cache.clear()
        else:
            self._cache.pop(url)


_DEFAULT_ESTIMATOR: BlockTimeEstimator | None = None


def _default_estimator() -> BlockTimeEstimator:
    global _DEFAULT_ESTIMATOR
    if _DEFAULT_ESTIMATOR is None:
        _DEFAULT_ESTIMATOR = BlockTimeEstimator()
    return _DEFAULT_ESTIMATOR


async def estimate_slot_duration(endpoint: Any) -> float:
    """Return the sampled slot rate for ``endpoint`` or ``2`` when unavailable."""

    if _endpoint_url(endpoint) is None:
        return FALLBACK_SLOT_RATE
    estimate = await _default_estimator().estimate(endpoint)
    return estimate.slot_rate


__all__ = [
    "BLOCK_TIME_CACHE_TTL",
    "BlockTimeEstimator",
    "FALLBACK_SLOT_RATE",
    "PERFORMANCE_SAMPLE_LIMIT",
    "estimate_slot_duration",
    "slot_rate_from_samples",
]
