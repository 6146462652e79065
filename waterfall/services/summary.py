"""
Execution summary — dashboard metrics derived from run state and logs.

Pure Python, no I/O. Feeds the execution panel: loads processed, successful
assignments, pending responses, average response time, per-carrier offer rows.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from waterfall.config import LANE_STATUS_MESSAGES
from waterfall.engine.log import CARRIER_ACCEPTED, CARRIER_DECLINED, OFFER_SENT
from waterfall.engine.models import (
    ACCEPTED, DECLINED, PAUSED, PENDING, RUNNING, SUCCEEDED, TERMINAL_STATUSES, TIMED_OUT,
)

# Carrier outcome → label used by the carrier response table
_RESPONSE_LABELS = {
    PENDING: 'pending',
    ACCEPTED: 'accepted',
    DECLINED: 'declined',
    TIMED_OUT: 'no_response',
}


def time_since(ts: Optional[datetime], now: datetime) -> str:
    """datetime → 'Just now' / '5 minutes ago' / '3 hours ago' / '2 days ago'."""
    if ts is None:
        return ''
    minutes = int((now - ts).total_seconds() // 60)
    if minutes < 1:
        return 'Just now'
    if minutes < 60:
        return f'{minutes} minutes ago'
    hours = minutes // 60
    if hours < 24:
        return f'{hours} hours ago'
    return f'{hours // 24} days ago'


def format_duration(delta: Optional[timedelta]) -> str:
    if delta is None:
        return 'n/a'
    minutes = int(delta.total_seconds() // 60)
    if minutes < 1:
        return f'{int(delta.total_seconds())} seconds'
    return f'{minutes} minutes'


def lane_status(status: Optional[str]) -> str:
    """Map a run status to the lane badge the dashboard shows."""
    if status == RUNNING:
        return 'Triggered'
    if status == PAUSED:
        return 'Paused'
    if status == SUCCEEDED:
        return 'Completed'
    return 'Not Triggered'


def status_message(lane_status_value: str) -> str:
    return LANE_STATUS_MESSAGES.get(lane_status_value, 'Waterfall status unknown')


def response_times(entries: Iterable) -> List[timedelta]:
    """Offer → response delay for every carrier that answered."""
    offered_at: Dict[str, datetime] = {}
    delays = []
    for entry in entries:
        if entry.kind == OFFER_SENT and entry.carrier_id:
            offered_at[entry.carrier_id] = entry.timestamp
        elif entry.kind in (CARRIER_ACCEPTED, CARRIER_DECLINED) and entry.carrier_id in offered_at:
            delays.append(entry.timestamp - offered_at[entry.carrier_id])
    return delays


def carrier_responses(state, entries: Iterable, remaining: Optional[timedelta] = None) -> List[Dict]:
    """
    One row per offered carrier: stage, offer time, response time, status.

    ``remaining`` is the current stage's time left; it is attached to rows
    still pending in the current stage.
    """
    offered_at: Dict[str, datetime] = {}
    answered_at: Dict[str, datetime] = {}
    for entry in entries:
        if not entry.carrier_id:
            continue
        if entry.kind == OFFER_SENT:
            offered_at[entry.carrier_id] = entry.timestamp
        elif entry.kind in (CARRIER_ACCEPTED, CARRIER_DECLINED):
            answered_at[entry.carrier_id] = entry.timestamp

    rows = []
    for stage in state.stages:
        for wf_entry in stage.entries:
            carrier_id = wf_entry.carrier_id
            if carrier_id not in offered_at:
                continue
            outcome = state.outcomes.get(carrier_id, PENDING)
            row = {
                'carrier_id': carrier_id,
                'carrier_name': wf_entry.carrier.name,
                'tier': stage.index + 1,
                'offer_sent_time': offered_at[carrier_id].isoformat(),
                'response_time': answered_at[carrier_id].isoformat() if carrier_id in answered_at else None,
                'status': _RESPONSE_LABELS.get(outcome, outcome),
                'response_window': stage.response_window,
                'time_remaining': None,
            }
            if (outcome == PENDING and remaining is not None
                    and stage.index == state.current_stage_index and not state.is_terminal):
                row['time_remaining'] = int(remaining.total_seconds() // 60)
            rows.append(row)
    return rows


def execution_summary(runs: Iterable[Tuple], now: datetime) -> Dict:
    """
    Aggregate metrics over (state, log_entries) pairs.

    Returns the same shape the execution panel renders.
    """
    processed = 0
    succeeded = 0
    pending = 0
    active = 0
    delays = []
    last_ts = None
    current = None

    for state, entries in runs:
        entries = list(entries)
        if state.status in TERMINAL_STATUSES:
            processed += 1
            if state.status == SUCCEEDED:
                succeeded += 1
        elif state.status in (RUNNING, PAUSED):
            active += 1
            stage = state.current_stage
            if stage is not None:
                pending += sum(1 for cid in stage.carrier_ids if state.outcomes.get(cid) == PENDING)
        delays.extend(response_times(entries))
        if entries and (last_ts is None or entries[-1].timestamp > last_ts):
            last_ts = entries[-1].timestamp
            current = state

    average = sum(delays, timedelta(0)) / len(delays) if delays else None

    if current is None:
        status = 'idle'
    elif current.status == PAUSED:
        status = 'paused'
    elif current.status == RUNNING:
        status = 'waiting_response' if pending else 'processing'
    else:
        status = 'completed'

    return {
        'current_load': current.load_id if current is not None and not current.is_terminal else None,
        'status': status,
        'current_tier': current.current_stage_index + 1 if current is not None else 0,
        'active_runs': active,
        'total_loads_processed': processed,
        'successful_assignments': succeeded,
        'pending_responses': pending,
        'average_response_time': format_duration(average),
        'last_activity': time_since(last_ts, now),
    }
