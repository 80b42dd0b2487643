from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 8


@dataclass(frozen=True, slots=True)
class MapOutcome(Generic[R]):
    """Result of one item: ``ok`` with ``value`` or skipped with ``error``."""

    index: int
    ok: bool
    value: Optional[R] = None
    error: Optional[str] = None


async def bounded_map_outcomes(
    source: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    limit: int = DEFAULT_CONCURRENCY,
    label: str = "bounded map",
) -> List[MapOutcome[R]]:
    """Run ``fn`` over ``source`` with at most ``limit`` calls in flight.

    Returns one outcome per input item, ordered by input position no matter
    in which order the calls completed. A raising item is recorded as a skip
    and never stops the other workers.
    """

    items = list(source)
    outcomes: List[Optional[MapOutcome[R]]] = [None] * len(items)
    if not items:
        return []

    queue: "asyncio.Queue[tuple[int, T]]" = asyncio.Queue()
    for idx, item in enumerate(items):
        queue.put_nowait((idx, item))

    async def _worker_loop(worker: int) -> None:
        while True:
            try:
                idx, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                value = await fn(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("%s: item %d skipped by worker-%d: %s", label, idx, worker, exc)
                outcomes[idx] = MapOutcome(index=idx, ok=False, error=str(exc) or type(exc).__name__)
            else:
                outcomes[idx] = MapOutcome(index=idx, ok=True, value=value)
            finally:
                queue.task_done()

    workers = max(1, min(int(limit), len(items)))
    await asyncio.gather(*(_worker_loop(n) for n in range(workers)))
    return [outcome for outcome in outcomes if outcome is not None]


async def bounded_map(
    source: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    *,
    limit: int = DEFAULT_CONCURRENCY,
    label: str = "bounded map",
) -> List[R]:
    """Like :func:`bounded_map_outcomes` but keeps only successful values."""

    outcomes = await bounded_map_outcomes(source, fn, limit=limit, label=label)
    return [outcome.value for outcome in outcomes if outcome.ok]  # type: ignore[misc]


__all__ = ["DEFAULT_CONCURRENCY", "MapOutcome", "bounded_map", "bounded_map_outcomes"]
