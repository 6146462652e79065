"""
Waterfall runner — drives one load through its resolved stages.

States:
  NOT_STARTED → RUNNING ⇄ PAUSED
  RUNNING → SUCCEEDED   (a carrier accepted)
  RUNNING → EXHAUSTED   (last stage declined / timed out)
  any non-terminal → CANCELLED

The runner never sleeps or spawns threads. It moves only when the host calls
``tick(now)`` (periodic timer) or ``record_response()`` (carrier replied).
Every mutator validates first and mutates second, so an InvalidStateError
leaves the run exactly as it was. Listeners see new log entries only after a
transition has fully committed; a listener that raises is logged and skipped.

The runner is not internally locked — hosts serialize calls per run.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from waterfall.engine.clock import ClockHandle, OfferClock
from waterfall.engine.errors import ConfigError, InvalidStateError
from waterfall.engine.log import (
    ExecutionLog, LogEntry,
    CARRIER_ACCEPTED, CARRIER_DECLINED, CARRIER_TIMED_OUT, OFFER_SENT,
    RUN_CANCELLED, RUN_EXHAUSTED, RUN_PAUSED, RUN_RESUMED, RUN_SUCCEEDED,
    STAGE_ESCALATED, STAGE_STARTED,
)
from waterfall.engine.models import (
    Stage, ACCEPTED, CANCELLED, DECLINED, EXHAUSTED, NOT_STARTED, PAUSED,
    PENDING, RESPONSE_OUTCOMES, RUNNING, SUCCEEDED, TERMINAL_STATUSES, TIMED_OUT,
)

logger = logging.getLogger('engine.runner')

Listener = Callable[[LogEntry, 'RunState'], None]


@dataclass
class RunState:
    lane_id: str
    load_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    stages: List[Stage] = field(default_factory=list)
    current_stage_index: int = 0
    stage_started_at: Optional[datetime] = None
    outcomes: Dict[str, str] = field(default_factory=dict)
    status: str = NOT_STARTED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    accepted_carrier_id: Optional[str] = None
    clock: Optional[ClockHandle] = None

    @property
    def key(self):
        return (self.lane_id, self.load_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_stage(self) -> Optional[Stage]:
        if not self.stages:
            return None
        return self.stages[self.current_stage_index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'lane_id': self.lane_id,
            'load_id': self.load_id,
            'run_id': self.run_id,
            'status': self.status,
            'current_stage_index': self.current_stage_index,
            'stage_started_at': self.stage_started_at.isoformat() if self.stage_started_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'accepted_carrier_id': self.accepted_carrier_id,
            'outcomes': dict(self.outcomes),
            'stages': [stage.to_dict() for stage in self.stages],
            'clock': self.clock.to_dict() if self.clock else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunState':
        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            lane_id=data['lane_id'],
            load_id=data['load_id'],
            run_id=data['run_id'],
            stages=[Stage.from_dict(s) for s in data.get('stages', [])],
            current_stage_index=data.get('current_stage_index', 0),
            stage_started_at=_dt(data.get('stage_started_at')),
            outcomes=dict(data.get('outcomes', {})),
            status=data.get('status', NOT_STARTED),
            started_at=_dt(data.get('started_at')),
            finished_at=_dt(data.get('finished_at')),
            accepted_carrier_id=data.get('accepted_carrier_id'),
            clock=ClockHandle.from_dict(data['clock']) if data.get('clock') else None,
        )


class WaterfallRunner:
    """
    Usage:
        runner = WaterfallRunner('lane-1', 'LD009', clock=OfferClock())
        runner.subscribe(send_offer_email)
        runner.start(resolve(entries, tiers, auto_tier_enabled=True))
        ...
        runner.record_response('carrier_001', ACCEPTED)
        runner.tick()
    """

    def __init__(self, lane_id: str, load_id: str, clock: OfferClock = None,
                 log: ExecutionLog = None, run_id: str = None):
        self.state = RunState(lane_id=lane_id, load_id=load_id)
        if run_id:
            self.state.run_id = run_id
        self.clock = clock or OfferClock()
        self.log = log or ExecutionLog()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener):
        """Call ``listener(entry, state)`` for every log entry written after this point."""
        self._listeners.append(listener)

    # ── Read helpers ──────────────────────────────────────────────────

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def current_stage(self) -> Optional[Stage]:
        return self.state.current_stage

    @property
    def pending_carriers(self) -> List[str]:
        stage = self.state.current_stage
        if stage is None or self.state.status not in (RUNNING, PAUSED):
            return []
        return [cid for cid in stage.carrier_ids if self.state.outcomes.get(cid) == PENDING]

    def remaining(self, now: datetime = None):
        """Time left in the current stage's window, or None once the run is not active."""
        if self.state.status not in (RUNNING, PAUSED) or self.state.clock is None:
            return None
        return self.clock.remaining(self.state.clock, now or self.clock.now())

    # ── Mutators ──────────────────────────────────────────────────────

    def start(self, stages: List[Stage], now: datetime = None):
        now = self._check_now(now)
        if self.state.status != NOT_STARTED:
            raise InvalidStateError(f"Run {self._label} is {self.state.status}; cannot start", self.state.status)
        if not stages:
            raise ConfigError('Cannot start a waterfall with no stages')
        seen = set()
        for stage in stages:
            for carrier_id in stage.carrier_ids:
                if carrier_id in seen:
                    raise ConfigError(f"Carrier {carrier_id} appears in more than one stage")
                seen.add(carrier_id)

        events = []
        self.state.stages = list(stages)
        self.state.status = RUNNING
        self.state.started_at = now
        self._open_stage(0, now, STAGE_STARTED, events)
        logger.info("Run %s started — %d stages, %d carriers", self._label, len(stages), len(seen),
                    extra=self._log_extra)
        self._publish(events)

    def record_response(self, carrier_id: str, outcome: str, now: datetime = None, detail: str = ''):
        """Apply a carrier's accept/decline for the current stage."""
        if outcome not in RESPONSE_OUTCOMES:
            raise ValueError(f"Unknown response outcome: {outcome!r}. Expected one of {RESPONSE_OUTCOMES}")
        now = self._check_now(now)
        self._require_status(RUNNING, 'record a response')

        stage = self.state.current_stage
        entry = stage.entry_for(carrier_id)
        if entry is None:
            raise InvalidStateError(
                f"Carrier {carrier_id} has no open offer in stage {stage.index} of run {self._label}",
                self.state.status,
            )
        if self.state.outcomes.get(carrier_id) != PENDING:
            raise InvalidStateError(
                f"Carrier {carrier_id} already responded ({self.state.outcomes.get(carrier_id)})",
                self.state.status,
            )
        if self.clock.is_expired(self.state.clock, now):
            raise InvalidStateError(
                f"Response window for stage {stage.index} closed before carrier {carrier_id} responded",
                self.state.status,
            )

        events = []
        name = entry.carrier.name or carrier_id
        if outcome == ACCEPTED:
            self.state.outcomes[carrier_id] = ACCEPTED
            self.state.accepted_carrier_id = carrier_id
            self.state.status = SUCCEEDED
            self.state.finished_at = now
            self._emit(events, now, CARRIER_ACCEPTED, entry.carrier,
                       detail or f"{name} accepted the offer")
            self._emit(events, now, RUN_SUCCEEDED, entry.carrier,
                       f"Load {self.state.load_id} assigned to {name}")
            logger.info("Run %s succeeded — %s accepted in stage %d", self._label, carrier_id, stage.index,
                        extra=self._log_extra)
        else:
            self.state.outcomes[carrier_id] = DECLINED
            self._emit(events, now, CARRIER_DECLINED, entry.carrier,
                       detail or f"{name} declined the offer")
            logger.info("Run %s — %s declined in stage %d", self._label, carrier_id, stage.index,
                        extra=self._log_extra)
            if not self._stage_pending(stage):
                self._escalate(now, events)
        self._publish(events)

    def tick(self, now: datetime = None) -> bool:
        """
        Check the current stage's window. Returns True if the run changed.

        Calling again with the same ``now`` is a no-op.
        """
        now = self._check_now(now)
        if self.state.status == PAUSED:
            return False
        self._require_status(RUNNING, 'tick')
        if not self.clock.is_expired(self.state.clock, now):
            return False

        events = []
        stage = self.state.current_stage
        for entry in stage.entries:
            if self.state.outcomes.get(entry.carrier_id) == PENDING:
                self.state.outcomes[entry.carrier_id] = TIMED_OUT
                self._emit(events, now, CARRIER_TIMED_OUT, entry.carrier,
                           f"No response received within {stage.response_window}-minute window")
        logger.info("Run %s — stage %d timed out after %d min", self._label, stage.index, stage.response_window,
                    extra=self._log_extra)
        self._escalate(now, events)
        self._publish(events)
        return True

    def pause(self, now: datetime = None):
        now = self._check_now(now)
        self._require_status(RUNNING, 'pause')
        events = []
        self.state.clock = self.clock.pause(self.state.clock, now)
        self.state.status = PAUSED
        self._emit(events, now, RUN_PAUSED, None, 'Waterfall paused — offer window frozen')
        logger.info("Run %s paused in stage %d", self._label, self.state.current_stage_index, extra=self._log_extra)
        self._publish(events)

    def resume(self, now: datetime = None):
        now = self._check_now(now)
        self._require_status(PAUSED, 'resume')
        events = []
        self.state.clock = self.clock.resume(self.state.clock, now)
        self.state.status = RUNNING
        remaining = self.clock.remaining(self.state.clock, now)
        self._emit(events, now, RUN_RESUMED, None,
                   f"Waterfall resumed — {int(remaining.total_seconds() // 60)} minutes left in stage")
        logger.info("Run %s resumed in stage %d", self._label, self.state.current_stage_index, extra=self._log_extra)
        self._publish(events)

    def cancel(self, now: datetime = None, reason: str = ''):
        now = self._check_now(now)
        if self.state.is_terminal:
            raise InvalidStateError(f"Run {self._label} is {self.state.status}; cannot cancel", self.state.status)
        events = []
        self.state.status = CANCELLED
        self.state.finished_at = now
        self._emit(events, now, RUN_CANCELLED, None, reason or 'Waterfall cancelled')
        logger.info("Run %s cancelled%s", self._label, f": {reason}" if reason else '', extra=self._log_extra)
        self._publish(events)

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {'state': self.state.to_dict(), 'log': self.log.to_dict()}

    @classmethod
    def restore(cls, data: Dict[str, Any], clock: OfferClock = None) -> 'WaterfallRunner':
        state = RunState.from_dict(data['state'])
        runner = cls(state.lane_id, state.load_id, clock=clock, log=ExecutionLog.from_dict(data.get('log', [])))
        runner.state = state
        return runner

    # ── Internals ─────────────────────────────────────────────────────

    @property
    def _label(self) -> str:
        return f"{self.state.lane_id}/{self.state.load_id}"

    @property
    def _log_extra(self) -> Dict[str, Any]:
        return {
            'lane_id': self.state.lane_id,
            'load_id': self.state.load_id,
            'run_id': self.state.run_id,
            'stage_index': self.state.current_stage_index,
        }

    def _check_now(self, now: Optional[datetime]) -> datetime:
        now = now or self.clock.now()
        last = self.log.last
        if last is not None and now < last.timestamp:
            raise InvalidStateError(
                f"Time moved backwards for run {self._label}: {now.isoformat()} < {last.timestamp.isoformat()}",
                self.state.status,
            )
        return now

    def _require_status(self, expected: str, action: str):
        if self.state.status != expected:
            raise InvalidStateError(
                f"Run {self._label} is {self.state.status}; cannot {action}", self.state.status,
            )

    def _stage_pending(self, stage: Stage) -> bool:
        return any(self.state.outcomes.get(cid) == PENDING for cid in stage.carrier_ids)

    def _open_stage(self, index: int, now: datetime, kind: str, events: list):
        stage = self.state.stages[index]
        self.state.current_stage_index = index
        self.state.stage_started_at = now
        self.state.clock = self.clock.start(stage.response_window, now)
        if kind == STAGE_STARTED:
            detail = f"Sending offers to {len(stage.entries)} carrier(s) in {stage.name}"
        else:
            detail = f"Escalated to stage {index + 1} ({stage.name})"
        self._emit(events, now, kind, None, detail)
        for entry in stage.entries:
            self.state.outcomes[entry.carrier_id] = PENDING
            contact = entry.carrier.contact_email or entry.carrier.name or entry.carrier_id
            self._emit(events, now, OFFER_SENT, entry.carrier,
                       f"Offer sent to {contact} - Response window: {stage.response_window} minutes")

    def _escalate(self, now: datetime, events: list):
        next_index = self.state.current_stage_index + 1
        if next_index < len(self.state.stages):
            logger.info("Run %s escalating to stage %d", self._label, next_index, extra=self._log_extra)
            self._open_stage(next_index, now, STAGE_ESCALATED, events)
            return
        self.state.status = EXHAUSTED
        self.state.finished_at = now
        self._emit(events, now, RUN_EXHAUSTED, None,
                   f"No carrier accepted load {self.state.load_id} after {len(self.state.stages)} stage(s)")
        logger.warning("Run %s exhausted — no carrier accepted", self._label, extra=self._log_extra)

    def _emit(self, events: list, now: datetime, kind: str, carrier, detail: str):
        entry = self.log.append(LogEntry(
            timestamp=now,
            stage_index=self.state.current_stage_index,
            kind=kind,
            detail=detail,
            carrier_id=carrier.id if carrier is not None else None,
            carrier_name=carrier.name if carrier is not None else '',
            lane_id=self.state.lane_id,
            load_id=self.state.load_id,
        ))
        events.append(entry)

    def _publish(self, events: list):
        for entry in events:
            for listener in self._listeners:
                try:
                    listener(entry, self.state)
                except Exception:
                    logger.error("Listener failed on %s for run %s", entry.kind, self._label, exc_info=True,
                                 extra=self._log_extra)
