"""
Run registry — one runner per (lane, load), at most one of them active.

A plain keyed map. Finished runs move to an archive list on ``end()`` so the
dashboard can still show the last outcome for a load. The registry does not
lock; hosts that call it from several threads serialize access to it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from waterfall.engine.clock import OfferClock
from waterfall.engine.errors import ConflictError, InvalidStateError
from waterfall.engine.models import NOT_STARTED, Stage
from waterfall.engine.runner import RunState, WaterfallRunner

logger = logging.getLogger('engine.registry')

RunKey = Tuple[str, str]


@dataclass(frozen=True)
class RunHandle:
    lane_id: str
    load_id: str
    run_id: str

    @property
    def key(self) -> RunKey:
        return (self.lane_id, self.load_id)


class RunRegistry:
    """
    Usage:
        registry = RunRegistry(clock=OfferClock())
        handle = registry.begin('lane-1', 'LD009', stages)
        registry.runner(handle).record_response('carrier_001', ACCEPTED)
        registry.end(handle)
    """

    def __init__(self, clock: OfferClock = None, on_new_runner: Callable[[WaterfallRunner], None] = None):
        self.clock = clock or OfferClock()
        self._on_new_runner = on_new_runner
        self._runs: Dict[RunKey, WaterfallRunner] = {}
        self._archive: Dict[RunKey, List[WaterfallRunner]] = {}

    def begin(self, lane_id: str, load_id: str, stages: List[Stage], now: datetime = None) -> RunHandle:
        """
        Create and start a runner for (lane_id, load_id).

        Raises ConflictError if a non-terminal run already holds the key. A
        finished run that was never ended is archived first.
        """
        key = (lane_id, load_id)
        existing = self._runs.get(key)
        if existing is not None:
            if not existing.is_terminal:
                raise ConflictError(lane_id, load_id)
            self._archive_runner(existing)

        runner = WaterfallRunner(lane_id, load_id, clock=self.clock)
        if self._on_new_runner:
            self._on_new_runner(runner)
        # registered before start() so the key is held while offers go out
        self._runs[key] = runner
        try:
            runner.start(stages, now=now)
        except Exception:
            if runner.status == NOT_STARTED:
                del self._runs[key]
            raise
        logger.info("Registered run %s for %s/%s", runner.state.run_id[:8], lane_id, load_id)
        return self.handle_for(runner)

    def adopt(self, runner: WaterfallRunner) -> RunHandle:
        """Register an already-built runner (e.g. restored from a snapshot)."""
        key = runner.state.key
        existing = self._runs.get(key)
        if existing is not None and existing is not runner:
            if not existing.is_terminal:
                raise ConflictError(*key)
            self._archive_runner(existing)
        if self._on_new_runner:
            self._on_new_runner(runner)
        self._runs[key] = runner
        return self.handle_for(runner)

    @staticmethod
    def handle_for(runner: WaterfallRunner) -> RunHandle:
        return RunHandle(runner.state.lane_id, runner.state.load_id, runner.state.run_id)

    def get(self, lane_id: str, load_id: str) -> Optional[RunState]:
        """Current run for the key, else the most recently archived one."""
        runner = self.find(lane_id, load_id)
        return runner.state if runner else None

    def find(self, lane_id: str, load_id: str) -> Optional[WaterfallRunner]:
        key = (lane_id, load_id)
        if key in self._runs:
            return self._runs[key]
        archived = self._archive.get(key)
        return archived[-1] if archived else None

    def is_registered(self, handle: RunHandle) -> bool:
        runner = self._runs.get(handle.key)
        return runner is not None and runner.state.run_id == handle.run_id

    def runner(self, handle: RunHandle) -> WaterfallRunner:
        runner = self._runs.get(handle.key)
        if runner is None or runner.state.run_id != handle.run_id:
            raise InvalidStateError(f"No registered run {handle.run_id} for {handle.lane_id}/{handle.load_id}")
        return runner

    def end(self, handle: RunHandle) -> RunState:
        """Archive a finished run and free its key."""
        runner = self.runner(handle)
        if not runner.is_terminal:
            raise InvalidStateError(
                f"Run {handle.lane_id}/{handle.load_id} is {runner.status}; cancel it before ending",
                runner.status,
            )
        self._archive_runner(runner)
        return runner.state

    def pause(self, handle: RunHandle, now: datetime = None):
        self.runner(handle).pause(now=now)

    def resume(self, handle: RunHandle, now: datetime = None):
        self.runner(handle).resume(now=now)

    def stop(self, handle: RunHandle, now: datetime = None, reason: str = ''):
        self.runner(handle).cancel(now=now, reason=reason)

    def active(self) -> List[RunHandle]:
        return [self.handle_for(r) for r in self._runs.values() if not r.is_terminal]

    def runners(self, include_archived: bool = False) -> List[WaterfallRunner]:
        runners = list(self._runs.values())
        if include_archived:
            for archived in self._archive.values():
                runners.extend(archived)
        return runners

    def archived(self, lane_id: str, load_id: str) -> List[RunState]:
        return [r.state for r in self._archive.get((lane_id, load_id), [])]

    def tick_all(self, now: datetime = None) -> List[RunHandle]:
        """Tick every running run. Returns handles whose run changed."""
        now = now or self.clock.now()
        changed = []
        for runner in list(self._runs.values()):
            if runner.is_terminal:
                continue
            try:
                if runner.tick(now=now):
                    changed.append(self.handle_for(runner))
            except InvalidStateError as e:
                logger.error("Tick failed for %s/%s: %s", runner.state.lane_id, runner.state.load_id, e)
        return changed

    def _archive_runner(self, runner: WaterfallRunner):
        key = runner.state.key
        if self._runs.get(key) is runner:
            del self._runs[key]
        self._archive.setdefault(key, []).append(runner)
        logger.info("Archived run %s for %s/%s (%s)", runner.state.run_id[:8], key[0], key[1], runner.status)
