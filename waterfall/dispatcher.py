"""
Dispatcher — host-side coordinator around the waterfall engine.

Owns one RunRegistry for the process and serializes every call to it behind a
lock. Each state change is followed by the same bookkeeping:

  snapshot to Redis → (terminal?) archive to Postgres → end() in the registry

Offer delivery and Slack alerts hang off runner listeners, so the engine
itself never does I/O. Listeners are called once the lock is released, in log
order, with a copy of the run state taken when each entry was written.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Dict, List

from waterfall.engine.clock import OfferClock
from waterfall.engine.errors import ConfigError
from waterfall.engine.models import LaneConfig, WEEKDAYS
from waterfall.engine.registry import RunRegistry
from waterfall.engine.runner import WaterfallRunner
from waterfall.engine.tiers import resolve
from waterfall.services import summary as summary_svc

logger = logging.getLogger('waterfall.dispatcher')


class RunNotFound(LookupError):
    def __init__(self, lane_id, load_id):
        self.lane_id = lane_id
        self.load_id = load_id
        super().__init__(f"No waterfall run for lane '{lane_id}' / load '{load_id}'")


def filter_by_capacity(config: LaneConfig, pickup_date: date) -> LaneConfig:
    """Drop carriers whose capacity rules give them zero trucks on the pickup weekday."""
    weekday = pickup_date.weekday()
    kept = []
    for entry in config.entries:
        if entry.carrier.capacity_on(weekday) == 0:
            logger.info("Lane %s: skipping carrier %s — no capacity on %s",
                        config.lane_id, entry.carrier_id, WEEKDAYS[weekday])
            continue
        kept.append(entry)
    if not kept and config.entries:
        raise ConfigError(f"No carrier on this waterfall has capacity on {WEEKDAYS[weekday]}")
    config.entries = kept
    return config


class Dispatcher:
    """
    Usage:
        dispatcher = Dispatcher(store=SnapshotStore(redis_client), archive=persist_run,
                                listeners=[notifications.handle_event])
        dispatcher.restore()
        dispatcher.launch(lane_payload, 'LD009')
        dispatcher.respond('lane-1', 'LD009', 'carrier_001', 'accepted')
        dispatcher.tick_all()
    """

    def __init__(self, store=None, archive: Callable = None, listeners: List[Callable] = None,
                 clock: OfferClock = None):
        self.clock = clock or OfferClock()
        self.store = store
        self.archive = archive
        self._listeners = list(listeners or [])
        self._pending = []
        self._lock = threading.RLock()
        self.registry = RunRegistry(clock=self.clock, on_new_runner=self._attach)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def restore(self) -> int:
        """Reload live runs from snapshots. Returns how many were restored."""
        if self.store is None:
            return 0
        restored = 0
        with self._lock:
            for snap in self.store.load_all():
                try:
                    runner = WaterfallRunner.restore(snap, clock=self.clock)
                except (KeyError, TypeError, ValueError):
                    logger.error("Skipping unreadable run snapshot", exc_info=True)
                    continue
                if runner.is_terminal:
                    self._finish(runner)
                    continue
                self.registry.adopt(runner)
                restored += 1
        if restored:
            logger.info("Restored %d active waterfall runs from snapshots", restored)
        return restored

    # ── Commands ──────────────────────────────────────────────────────

    def preview(self, payload: Dict, pickup_date: date = None):
        """Parse + resolve a lane without starting anything."""
        config = LaneConfig.from_dict(payload)
        if pickup_date is not None:
            config = filter_by_capacity(config, pickup_date)
        return config, resolve(config.entries, config.custom_tiers, config.auto_tier_enabled)

    def launch(self, payload: Dict, load_id: str, pickup_date: date = None, now: datetime = None):
        config, stages = self.preview(payload, pickup_date)
        with self._locked():
            handle = self.registry.begin(config.lane_id, str(load_id), stages, now=now)
            runner = self.registry.runner(handle)
            self._after_change(runner)
        logger.info("Launched waterfall for lane %s load %s — %d stages", config.lane_id, load_id, len(stages),
                    extra={'lane_id': config.lane_id, 'load_id': str(load_id), 'run_id': runner.state.run_id})
        return runner.state

    def respond(self, lane_id: str, load_id: str, carrier_id: str, outcome: str,
                detail: str = '', now: datetime = None):
        with self._locked():
            runner = self._find(lane_id, load_id)
            runner.record_response(carrier_id, outcome, now=now, detail=detail)
            self._after_change(runner)
        return runner.state

    def pause(self, lane_id: str, load_id: str, now: datetime = None):
        with self._locked():
            runner = self._find(lane_id, load_id)
            runner.pause(now=now)
            self._after_change(runner)
        return runner.state

    def resume(self, lane_id: str, load_id: str, now: datetime = None):
        with self._locked():
            runner = self._find(lane_id, load_id)
            runner.resume(now=now)
            self._after_change(runner)
        return runner.state

    def cancel(self, lane_id: str, load_id: str, reason: str = '', now: datetime = None):
        with self._locked():
            runner = self._find(lane_id, load_id)
            runner.cancel(now=now, reason=reason)
            self._after_change(runner)
        return runner.state

    def tick_all(self, now: datetime = None) -> List:
        """Advance every running run whose window has expired."""
        with self._locked():
            now = now or self.clock.now()
            changed = self.registry.tick_all(now)
            states = []
            for handle in changed:
                runner = self.registry.runner(handle)
                self._after_change(runner)
                states.append(runner.state)
        if changed:
            logger.info("Tick advanced %d runs", len(changed))
        return states

    # ── Queries ───────────────────────────────────────────────────────

    def status(self, lane_id: str, load_id: str, now: datetime = None) -> Dict:
        with self._lock:
            runner = self._find(lane_id, load_id)
            now = now or self.clock.now()
            remaining = runner.remaining(now)
            state = runner.state
            data = state.to_dict()
            data.pop('clock', None)
            badge = summary_svc.lane_status(state.status)
            data.update({
                'remaining_seconds': int(remaining.total_seconds()) if remaining is not None else None,
                'pending_carriers': runner.pending_carriers,
                'lane_status': badge,
                'status_message': summary_svc.status_message(badge),
                'responses': summary_svc.carrier_responses(state, runner.log.all(), remaining),
                'log_length': len(runner.log),
            })
            return data

    def log(self, lane_id: str, load_id: str, since: int = 0) -> List[Dict]:
        with self._lock:
            runner = self._find(lane_id, load_id)
            return [entry.to_dict() for entry in runner.log.since(since)]

    def runs(self) -> List[Dict]:
        with self._lock:
            return [
                {
                    'lane_id': r.state.lane_id,
                    'load_id': r.state.load_id,
                    'run_id': r.state.run_id,
                    'status': r.status,
                    'current_stage_index': r.state.current_stage_index,
                    'stage_count': len(r.state.stages),
                }
                for r in self.registry.runners(include_archived=True)
            ]

    def summary(self, now: datetime = None) -> Dict:
        with self._lock:
            now = now or self.clock.now()
            pairs = [(r.state, r.log.all()) for r in self.registry.runners(include_archived=True)]
            return summary_svc.execution_summary(pairs, now)

    # ── Internals ─────────────────────────────────────────────────────

    @contextmanager
    def _locked(self):
        """Hold the lock for a command; hand its log entries to listeners after release."""
        events = []
        try:
            with self._lock:
                try:
                    yield
                finally:
                    events, self._pending = self._pending, []
        finally:
            self._deliver(events)

    def _attach(self, runner: WaterfallRunner):
        runner.subscribe(self._collect)

    def _collect(self, entry, state):
        # state is copied so delivery sees the run as it was at this entry
        self._pending.append((entry, replace(state, outcomes=dict(state.outcomes))))

    def _deliver(self, events):
        for entry, state in events:
            for listener in self._listeners:
                try:
                    listener(entry, state)
                except Exception:
                    logger.error("Listener %s failed on %s for %s/%s",
                                 getattr(listener, '__name__', listener), entry.kind,
                                 state.lane_id, state.load_id, exc_info=True,
                                 extra={'lane_id': state.lane_id, 'load_id': state.load_id,
                                        'run_id': state.run_id, 'carrier_id': entry.carrier_id})

    def _find(self, lane_id: str, load_id: str) -> WaterfallRunner:
        runner = self.registry.find(lane_id, load_id)
        if runner is None:
            raise RunNotFound(lane_id, load_id)
        return runner

    def _after_change(self, runner: WaterfallRunner):
        if runner.is_terminal:
            self._finish(runner)
        elif self.store is not None:
            self.store.save(runner.snapshot())

    def _finish(self, runner: WaterfallRunner):
        if self.archive is not None:
            self.archive(runner.state, runner.log.all())
        if self.store is not None:
            self.store.delete(runner.state.lane_id, runner.state.load_id)
        handle = self.registry.handle_for(runner)
        if self.registry.is_registered(handle):
            self.registry.end(handle)
