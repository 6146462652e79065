"""
Offer clock — passive countdown for a stage's response window.

Nothing fires on its own: the runner asks ``is_expired(handle, now)`` whenever
it is ticked. Time spent paused is accumulated on the handle and excluded from
elapsed time, so a paused stage resumes with the window it had left.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ClockHandle:
    started_at: datetime
    window: timedelta
    paused_total: timedelta = timedelta(0)
    paused_at: Optional[datetime] = None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'window_seconds': self.window.total_seconds(),
            'paused_seconds': self.paused_total.total_seconds(),
            'paused_at': self.paused_at.isoformat() if self.paused_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClockHandle':
        return cls(
            started_at=datetime.fromisoformat(data['started_at']),
            window=timedelta(seconds=data['window_seconds']),
            paused_total=timedelta(seconds=data.get('paused_seconds', 0)),
            paused_at=datetime.fromisoformat(data['paused_at']) if data.get('paused_at') else None,
        )


class OfferClock:
    """
    Usage:
        clock = OfferClock()
        handle = clock.start(30)
        ...
        if clock.is_expired(handle, clock.now()):
            escalate()

    Pass ``now_fn`` to drive time from a test or a replay.
    """

    def __init__(self, now_fn: Callable[[], datetime] = utcnow):
        self._now_fn = now_fn

    def now(self) -> datetime:
        return self._now_fn()

    def start(self, window_minutes: int, now: Optional[datetime] = None) -> ClockHandle:
        if window_minutes <= 0:
            raise ValueError(f"Response window must be positive, got {window_minutes}")
        return ClockHandle(started_at=now or self.now(), window=timedelta(minutes=window_minutes))

    def elapsed(self, handle: ClockHandle, now: datetime) -> timedelta:
        """Running time since start, excluding every paused interval."""
        until = handle.paused_at if handle.paused_at is not None else now
        return max(until - handle.started_at - handle.paused_total, timedelta(0))

    def remaining(self, handle: ClockHandle, now: datetime) -> timedelta:
        return max(handle.window - self.elapsed(handle, now), timedelta(0))

    def is_expired(self, handle: ClockHandle, now: datetime) -> bool:
        if handle.is_paused:
            return False
        return self.elapsed(handle, now) >= handle.window

    def pause(self, handle: ClockHandle, now: datetime) -> ClockHandle:
        if handle.is_paused:
            return handle
        return replace(handle, paused_at=now)

    def resume(self, handle: ClockHandle, now: datetime) -> ClockHandle:
        if not handle.is_paused:
            return handle
        gap = max(now - handle.paused_at, timedelta(0))
        return replace(handle, paused_total=handle.paused_total + gap, paused_at=None)
