"""Reactive farm pipeline: descriptors -> parsed chain state -> hydrated views.

Every stage run is stamped with a per-stage generation when it starts. A
finished run is committed only when its generation is newer than the one
already committed, so a slow stale run can finish late without overwriting
fresher output. Runs are never cancelled to make room for newer ones; the
underlying RPC calls are not cancellable in any useful sense.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Generic, Mapping, Optional, Set, Tuple, TypeVar

from .block_time import BlockTimeEstimator
from .chain_state import ChainStateParser
from .descriptors import DescriptorSource
from .hydrate import Hydrator, chain_datetime
from .types import (
    FarmDescriptor,
    HydratedFarmView,
    HydrationContext,
    ParsedFarmState,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_DESCRIPTORS = "descriptors"
STAGE_PARSED = "parsed"
STAGE_HYDRATED = "hydrated"
STAGE_ORDER: Tuple[str, ...] = (STAGE_DESCRIPTORS, STAGE_PARSED, STAGE_HYDRATED)

# Stage -> names whose change starts a new run of that stage. Stage names
# appear as inputs of their downstream stages.
DEPENDENCIES: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        STAGE_DESCRIPTORS: frozenset({"refresh"}),
        STAGE_PARSED: frozenset({STAGE_DESCRIPTORS, "connection", "owner"}),
        STAGE_HYDRATED: frozenset(
            {
                STAGE_PARSED,
                "prices",
                "lp_prices",
                "liquidity",
                "aprs",
                "endpoint",
                "token_resolver",
                "lp_resolver",
                "chain_time_offset",
            }
        ),
    }
)

_MAPPING_INPUTS = {"prices", "lp_prices", "liquidity", "aprs"}

# A stage has nothing to work on until its upstream stage committed once.
_UPSTREAM: Mapping[str, str] = MappingProxyType({STAGE_PARSED: STAGE_DESCRIPTORS, STAGE_HYDRATED: STAGE_PARSED})


def _no_token(_key: str) -> None:
    return None


def _default_inputs() -> Dict[str, Any]:
    empty: Mapping[str, Any] = MappingProxyType({})
    return {
        "connection": None,
        "owner": None,
        "prices": empty,
        "lp_prices": empty,
        "liquidity": empty,
        "aprs": empty,
        "endpoint": None,
        "token_resolver": _no_token,
        "lp_resolver": _no_token,
        "chain_time_offset": 0.0,
    }


def _same(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if type(old) is not type(new):
        return False
    try:
        return bool(old == new)
    except Exception:
        return False


class StageStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMMITTED = "committed"
    DISCARDED = "discarded"


@dataclass
class StageSlot(Generic[T]):
    """Committed output of one stage plus its generation bookkeeping."""

    name: str
    value: T
    started: int = 0
    committed: int = 0
    status: StageStatus = StageStatus.IDLE
    in_flight: Set[int] = field(default_factory=set)

    def begin(self) -> int:
        self.started += 1
        self.in_flight.add(self.started)
        self.status = StageStatus.RUNNING
        return self.started

    def try_commit(self, generation: int, value: T) -> bool:
        """Commit ``value`` unless a newer generation is already committed.

        Contains no ``await``, so the compare and the write are atomic on
        the event loop.
        """

        self.in_flight.discard(generation)
        if generation <= self.committed:
            self.status = StageStatus.RUNNING if self.in_flight else StageStatus.DISCARDED
            return False
        self.value = value
        self.committed = generation
        self.status = StageStatus.RUNNING if self.in_flight else StageStatus.COMMITTED
        return True

    def abandon(self, generation: int) -> None:
        self.in_flight.discard(generation)
        if not self.in_flight:
            self.status = StageStatus.DISCARDED


@dataclass(frozen=True, slots=True)
class StageSnapshot:
    name: str
    status: StageStatus
    started: int
    committed: int
    in_flight: int


Listener = Callable[[str, Any], Any]


class FarmPipeline:
    """Own the staged farm outputs and re-run stages when inputs change.

    Inputs are set with :meth:`set_inputs`; changes made in the same event
    loop tick are coalesced into one run per affected stage. Consumers read
    the committed outputs through the read-only properties or subscribe to
    commit notifications.
    """

    def __init__(
        self,
        source: DescriptorSource,
        *,
        parser: ChainStateParser | None = None,
        hydrator: Hydrator | None = None,
        estimator: BlockTimeEstimator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.parser = parser or ChainStateParser()
        self.hydrator = hydrator or Hydrator()
        self.estimator = estimator or BlockTimeEstimator()
        self._clock = clock
        self._inputs: Dict[str, Any] = _default_inputs()
        self._slots: Dict[str, StageSlot[Any]] = {
            name: StageSlot(name=name, value=()) for name in STAGE_ORDER
        }
        self._dirty: Set[str] = set()
        self._flush_handle: asyncio.Handle | None = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: list[Listener] = []
        self._is_loading = True
        self._have_upcoming_farms = False
        self._parse_failures: Mapping[str, str] = MappingProxyType({})
        self._catalog_error: Optional[str] = None
        self._catalog_error_generation = 0

    # ------------------------------------------------------------------
    # read-only outputs
    # ------------------------------------------------------------------
    @property
    def descriptors(self) -> Tuple[FarmDescriptor, ...]:
        return self._slots[STAGE_DESCRIPTORS].value

    @property
    def parsed_states(self) -> Tuple[ParsedFarmState, ...]:
        return self._slots[STAGE_PARSED].value

    @property
    def hydrated(self) -> Tuple[HydratedFarmView, ...]:
        return self._slots[STAGE_HYDRATED].value

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def have_upcoming_farms(self) -> bool:
        return self._have_upcoming_farms

    @property
    def parse_failures(self) -> Mapping[str, str]:
        return self._parse_failures

    @property
    def catalog_error(self) -> Optional[str]:
        return self._catalog_error

    def stage_status(self, name: str) -> StageSnapshot:
        slot = self._slots[name]
        return StageSnapshot(
            name=name,
            status=slot.status,
            started=slot.started,
            committed=slot.committed,
            in_flight=len(slot.in_flight),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(stage, value)`` after every commit; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # triggers
    # ------------------------------------------------------------------
    def set_inputs(self, **changes: Any) -> Set[str]:
        """Update named inputs; returns the stages scheduled to re-run."""

        unknown = set(changes) - set(self._inputs)
        if unknown:
            raise ValueError(f"unknown pipeline input(s): {', '.join(sorted(unknown))}")
        changed: Set[str] = set()
        for name, value in changes.items():
            if name in _MAPPING_INPUTS:
                value = MappingProxyType(dict(value or {}))
            if _same(self._inputs[name], value):
                continue
            self._inputs[name] = value
            changed.add(name)
        affected = {stage for stage, deps in DEPENDENCIES.items() if deps & changed}
        if affected:
            log.debug("Inputs %s changed; scheduling %s", sorted(changed), sorted(affected))
            self._mark_dirty(affected)
        return affected

    def request_refresh(self) -> None:
        """Refetch the farm catalog (the only way descriptors are reloaded)."""

        self._mark_dirty({STAGE_DESCRIPTORS})

    def invalidate(self, stage: str) -> None:
        """Force a new run of ``stage`` with the current inputs."""

        if stage not in self._slots:
            raise ValueError(f"unknown stage {stage!r}")
        self._mark_dirty({stage})

    def start(self) -> None:
        self.request_refresh()

    async def wait_idle(self) -> None:
        """Wait until no run is scheduled or in flight."""

        while True:
            if self._flush_handle is not None or self._dirty:
                await asyncio.sleep(0)
                continue
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._dirty.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    def _mark_dirty(self, stages: Set[str]) -> None:
        self._dirty |= stages
        if self._flush_handle is None:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_soon(self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        dirty, self._dirty = self._dirty, set()
        for stage in STAGE_ORDER:
            if stage not in dirty:
                continue
            upstream = _UPSTREAM.get(stage)
            if upstream is not None and self._slots[upstream].committed == 0:
                continue
            if stage == STAGE_PARSED and self._inputs["connection"] is None:
                log.debug("No connection; parsed stage waits")
                continue
            self._launch(stage)

    def _launch(self, stage: str) -> None:
        slot = self._slots[stage]
        generation = slot.begin()
        snapshot = self._snapshot(stage)
        task = asyncio.create_task(
            self._run_stage(stage, generation, snapshot),
            name=f"farm-pipeline:{stage}:{generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("Stage %s run %d started", stage, generation)

    def _snapshot(self, stage: str) -> Dict[str, Any]:
        """Capture the inputs a run reads; the run never looks at live state."""

        if stage == STAGE_PARSED:
            return {
                "descriptors": self.descriptors,
                "connection": self._inputs["connection"],
                "owner": self._inputs["owner"],
            }
        if stage == STAGE_HYDRATED:
            snapshot = {name: self._inputs[name] for name in DEPENDENCIES[STAGE_HYDRATED] if name in self._inputs}
            snapshot["parsed"] = self.parsed_states
            snapshot["now"] = self._clock()
            return snapshot
        return {}

    # ------------------------------------------------------------------
    # stage bodies
    # ------------------------------------------------------------------
    async def _run_stage(self, stage: str, generation: int, snapshot: Dict[str, Any]) -> None:
        slot = self._slots[stage]
        extra: Any = None
        try:
            if stage == STAGE_DESCRIPTORS:
                refresh = await self.source.refresh()
                if not refresh.ok:
                    self._record_catalog_failure(generation, refresh.error)
                    return
                value: Any = refresh.descriptors
            elif stage == STAGE_PARSED:
                report = await self.parser.parse_report(
                    snapshot["descriptors"],
                    snapshot["connection"],
                    snapshot["owner"],
                )
                value, extra = report.states, report.failures
            else:
                value = await self._hydrate(snapshot)
        except asyncio.CancelledError:
            slot.abandon(generation)
            raise
        except Exception:
            log.exception("Stage %s run %d failed; output discarded", stage, generation)
            slot.abandon(generation)
            return
        self._commit(stage, generation, value, extra)

    async def _hydrate(self, snapshot: Dict[str, Any]) -> Tuple[HydratedFarmView, ...]:
        block_time = await self.estimator.estimate(snapshot["endpoint"])
        offset = float(snapshot["chain_time_offset"] or 0.0)
        context = HydrationContext(
            get_token=snapshot["token_resolver"],
            get_lp_token=snapshot["lp_resolver"],
            prices=snapshot["prices"],
            lp_prices=snapshot["lp_prices"],
            liquidity=snapshot["liquidity"],
            aprs=snapshot["aprs"],
            block_time=block_time,
            chain_now=chain_datetime(offset, now=snapshot["now"]),
            chain_time_offset=offset,
        )
        views = await self.hydrator.hydrate(snapshot["parsed"], context)
        return tuple(views)

    def _record_catalog_failure(self, generation: int, error: Optional[str]) -> None:
        """Publish a catalog error unless a newer refresh already settled the state.

        Like :meth:`_commit`, the generation checks and the write happen with no
        ``await`` in between.
        """

        slot = self._slots[STAGE_DESCRIPTORS]
        slot.abandon(generation)
        if generation <= slot.committed or generation < self._catalog_error_generation:
            log.debug("Ignoring catalog failure from stale refresh %d", generation)
            return
        self._catalog_error = error
        self._catalog_error_generation = generation

    def _commit(self, stage: str, generation: int, value: Any, extra: Any = None) -> None:
        slot = self._slots[stage]
        if not slot.try_commit(generation, value):
            log.debug(
                "Stage %s run %d discarded (generation %d already committed)",
                stage,
                generation,
                slot.committed,
            )
            return
        log.debug("Stage %s run %d committed (%d items)", stage, generation, len(value))

        if stage == STAGE_DESCRIPTORS:
            if generation > self._catalog_error_generation:
                self._catalog_error = None
            self._have_upcoming_farms = any(d.upcoming for d in value)
        elif stage == STAGE_PARSED:
            self._parse_failures = MappingProxyType(dict(extra or {}))
        else:
            self._is_loading = len(value) == 0

        downstream = {name for name, deps in DEPENDENCIES.items() if stage in deps}
        if downstream:
            self._mark_dirty(downstream)

        self._notify(stage, value)

    def _notify(self, stage: str, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(stage, value)
            except Exception:
                log.exception("Pipeline listener failed for stage %s", stage)


__all__ = [
    "DEPENDENCIES",
    "FarmPipeline",
    "STAGE_DESCRIPTORS",
    "STAGE_HYDRATED",
    "STAGE_ORDER",
    "STAGE_PARSED",
    "StageSlot",
    "StageSnapshot",
    "StageStatus",
]
