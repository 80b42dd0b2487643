from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from .exceptions import CatalogFetchError
from .logging_utils import warn_once_per
from .providers.raydium_farms import fetch_farm_descriptors
from .types import FarmDescriptor

logger = logging.getLogger(__name__)

DescriptorFetcher = Callable[[], Awaitable[Tuple[FarmDescriptor, ...]]]


@dataclass(frozen=True, slots=True)
class DescriptorRefresh:
    """Result of one catalog refresh.

    ``descriptors`` is always usable: on failure it is the previously cached
    set and ``error`` describes what went wrong.
    """

    descriptors: Tuple[FarmDescriptor, ...]
    ok: bool
    fetched_at: float
    error: Optional[str] = None


class DescriptorSource:
    """Cached farm catalog, refreshed only on explicit request."""

    def __init__(
        self,
        fetcher: DescriptorFetcher | None = None,
        *,
        url: str | None = None,
        timeout: float = 10.0,
        attempts: int | None = None,
        backoff: float | None = None,
    ) -> None:
        if fetcher is None:
            kwargs = {"timeout": timeout, "attempts": attempts, "backoff": backoff}
            if url:
                kwargs["url"] = url
            fetcher = lambda: fetch_farm_descriptors(**kwargs)  # noqa: E731
        self._fetcher = fetcher
        self._current: Tuple[FarmDescriptor, ...] = ()
        self._fetched_at: float | None = None
        self._started = 0
        self._applied = 0
        self._error_token = 0
        self.last_error: Optional[str] = None

    @property
    def current(self) -> Tuple[FarmDescriptor, ...]:
        return self._current

    @property
    def loaded(self) -> bool:
        return self._fetched_at is not None

    async def refresh(self) -> DescriptorRefresh:
        """Fetch the catalog again, keeping the previous set on failure.

        Overlapping refreshes may finish in any order; the cached set and
        ``last_error`` only ever move forward to the newest refresh.
        """

        self._started += 1
        token = self._started
        try:
            descriptors = tuple(await self._fetcher())
        except CatalogFetchError as exc:
            return self._failed(token, str(exc))
        except Exception as exc:
            logger.exception("Unexpected farm catalog failure")
            return self._failed(token, f"{type(exc).__name__}: {exc}")

        if token < self._applied:
            logger.debug("Discarding catalog of superseded refresh %d (applied %d)", token, self._applied)
            return DescriptorRefresh(descriptors=descriptors, ok=True, fetched_at=time.time())

        self._applied = token
        self._current = descriptors
        self._fetched_at = time.time()
        if token > self._error_token:
            self._error_token = token
            self.last_error = None
        logger.info("Farm catalog refreshed: %d descriptors", len(descriptors))
        return DescriptorRefresh(descriptors=descriptors, ok=True, fetched_at=self._fetched_at)

    async def get(self) -> Tuple[FarmDescriptor, ...]:
        """Return the cached catalog, loading it on first use."""

        if not self.loaded:
            await self.refresh()
        return self._current

    def _failed(self, token: int, reason: str) -> DescriptorRefresh:
        if token > self._applied and token >= self._error_token:
            self._error_token = token
            self.last_error = reason
        warn_once_per(
            1.0,
            "farm-catalog-fetch",
            "Farm catalog refresh failed, keeping %d cached descriptors: %s",
            len(self._current),
            reason,
            logger=logger,
        )
        return DescriptorRefresh(
            descriptors=self._current,
            ok=False,
            fetched_at=time.time(),
            error=reason,
        )


__all__ = ["DescriptorFetcher", "DescriptorRefresh", "DescriptorSource"]
