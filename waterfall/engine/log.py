"""
Execution log — append-only audit trail of everything a run does.

Entries carry a monotonic ``seq`` assigned on append, so two events stamped
in the same millisecond still have a total order. There is no update or delete
API; size caps belong to whatever stores the log.

``replay()`` rebuilds stage index, carrier outcomes and status from entries
alone, which is how the dashboard renders archived runs.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from waterfall.engine.models import (
    ACCEPTED, CANCELLED, DECLINED, EXHAUSTED, NOT_STARTED, PAUSED, PENDING,
    RUNNING, SUCCEEDED, TIMED_OUT,
)

# ── Event kinds ───────────────────────────────────────────────────────────────
STAGE_STARTED = 'stage_started'
OFFER_SENT = 'offer_sent'
CARRIER_ACCEPTED = 'accepted'
CARRIER_DECLINED = 'declined'
CARRIER_TIMED_OUT = 'timed_out'
STAGE_ESCALATED = 'stage_escalated'
RUN_SUCCEEDED = 'run_succeeded'
RUN_EXHAUSTED = 'run_exhausted'
RUN_CANCELLED = 'run_cancelled'
RUN_PAUSED = 'run_paused'
RUN_RESUMED = 'run_resumed'

LOG_KINDS = [
    STAGE_STARTED, OFFER_SENT, CARRIER_ACCEPTED, CARRIER_DECLINED, CARRIER_TIMED_OUT,
    STAGE_ESCALATED, RUN_SUCCEEDED, RUN_EXHAUSTED, RUN_CANCELLED, RUN_PAUSED, RUN_RESUMED,
]

# Badge level shown next to each entry in the execution panel
_LEVELS = {
    STAGE_STARTED: 'info',
    OFFER_SENT: 'success',
    CARRIER_ACCEPTED: 'success',
    CARRIER_DECLINED: 'warning',
    CARRIER_TIMED_OUT: 'warning',
    STAGE_ESCALATED: 'info',
    RUN_SUCCEEDED: 'success',
    RUN_EXHAUSTED: 'error',
    RUN_CANCELLED: 'warning',
    RUN_PAUSED: 'info',
    RUN_RESUMED: 'info',
}


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    stage_index: int
    kind: str
    detail: str = ''
    carrier_id: Optional[str] = None
    carrier_name: str = ''
    lane_id: str = ''
    load_id: str = ''
    seq: Optional[int] = None

    @property
    def level(self) -> str:
        return _LEVELS.get(self.kind, 'info')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seq': self.seq,
            'timestamp': self.timestamp.isoformat(),
            'stage_index': self.stage_index,
            'kind': self.kind,
            'level': self.level,
            'detail': self.detail,
            'carrier_id': self.carrier_id,
            'carrier_name': self.carrier_name,
            'lane_id': self.lane_id,
            'load_id': self.load_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            timestamp=datetime.fromisoformat(data['timestamp']),
            stage_index=data['stage_index'],
            kind=data['kind'],
            detail=data.get('detail', ''),
            carrier_id=data.get('carrier_id'),
            carrier_name=data.get('carrier_name', ''),
            lane_id=data.get('lane_id', ''),
            load_id=data.get('load_id', ''),
            seq=data.get('seq'),
        )


class LogView:
    """Read-only window over the log as of the moment it was taken. Safe to iterate repeatedly."""

    def __init__(self, entries: List[LogEntry], start: int = 0, stop: Optional[int] = None):
        self._entries = entries
        self._start = start
        self._stop = len(entries) if stop is None else stop

    def __iter__(self) -> Iterator[LogEntry]:
        for i in range(self._start, self._stop):
            yield self._entries[i]

    def __len__(self):
        return self._stop - self._start

    def __getitem__(self, i):
        return list(self)[i]


class ExecutionLog:
    """Append-only, ordered list of LogEntry."""

    def __init__(self):
        self._entries: List[LogEntry] = []

    def append(self, entry: LogEntry) -> LogEntry:
        """Stamp the next sequence number and store the entry."""
        if self._entries and entry.timestamp < self._entries[-1].timestamp:
            raise ValueError(
                f"Log entry at {entry.timestamp.isoformat()} is earlier than the last "
                f"entry at {self._entries[-1].timestamp.isoformat()}"
            )
        entry = replace(entry, seq=len(self._entries) + 1)
        self._entries.append(entry)
        return entry

    def all(self) -> LogView:
        return LogView(self._entries)

    def since(self, seq: int) -> LogView:
        """Entries with a sequence number greater than ``seq``."""
        return LogView(self._entries, start=min(max(seq, 0), len(self._entries)))

    @property
    def last(self) -> Optional[LogEntry]:
        return self._entries[-1] if self._entries else None

    def __len__(self):
        return len(self._entries)

    def to_dict(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    @classmethod
    def from_dict(cls, data: List[Dict[str, Any]]) -> 'ExecutionLog':
        log = cls()
        for item in data:
            log.append(LogEntry.from_dict(item))
        return log


# ── Replay ────────────────────────────────────────────────────────────────────

@dataclass
class ReplayState:
    status: str = NOT_STARTED
    stage_index: int = 0
    outcomes: Dict[str, str] = field(default_factory=dict)
    accepted_carrier_id: Optional[str] = None
    transitions: List[tuple] = field(default_factory=list)


_OUTCOME_BY_KIND = {
    OFFER_SENT: PENDING,
    CARRIER_ACCEPTED: ACCEPTED,
    CARRIER_DECLINED: DECLINED,
    CARRIER_TIMED_OUT: TIMED_OUT,
}

_STATUS_BY_KIND = {
    STAGE_STARTED: RUNNING,
    RUN_SUCCEEDED: SUCCEEDED,
    RUN_EXHAUSTED: EXHAUSTED,
    RUN_CANCELLED: CANCELLED,
    RUN_PAUSED: PAUSED,
    RUN_RESUMED: RUNNING,
}


def replay(entries) -> ReplayState:
    """
    Rebuild run progress from log entries, in order.

    ``transitions`` records (stage_index, carrier_id, outcome-or-status) for
    every step so two runs can be compared event by event.
    """
    state = ReplayState()
    for entry in entries:
        if entry.kind in (STAGE_STARTED, STAGE_ESCALATED):
            state.stage_index = entry.stage_index
        if entry.kind in _OUTCOME_BY_KIND and entry.carrier_id is not None:
            outcome = _OUTCOME_BY_KIND[entry.kind]
            state.outcomes[entry.carrier_id] = outcome
            if outcome == ACCEPTED:
                state.accepted_carrier_id = entry.carrier_id
            state.transitions.append((entry.stage_index, entry.carrier_id, outcome))
        if entry.kind in _STATUS_BY_KIND:
            state.status = _STATUS_BY_KIND[entry.kind]
            state.transitions.append((entry.stage_index, None, state.status))
        elif entry.kind == STAGE_ESCALATED:
            state.transitions.append((entry.stage_index, None, STAGE_ESCALATED))
    return state
