"""
Waterfall dispatch engine.

  TierResolver    → tiers.resolve()
  OfferClock      → clock.OfferClock
  WaterfallRunner → runner.WaterfallRunner
  ExecutionLog    → log.ExecutionLog
  RunRegistry     → registry.RunRegistry

Pure, synchronous, no I/O. The host app (waterfall.dispatcher) owns timing,
persistence and notification delivery.
"""
from waterfall.engine.clock import ClockHandle, OfferClock
from waterfall.engine.errors import ConfigError, ConflictError, InvalidStateError, WaterfallError
from waterfall.engine.log import ExecutionLog, LogEntry, replay
from waterfall.engine.models import (
    Carrier, CustomTier, LaneConfig, Stage, WaterfallEntry,
    ACCEPTED, DECLINED, PENDING, TIMED_OUT,
    NOT_STARTED, RUNNING, PAUSED, SUCCEEDED, EXHAUSTED, CANCELLED,
)
from waterfall.engine.registry import RunHandle, RunRegistry
from waterfall.engine.runner import RunState, WaterfallRunner
from waterfall.engine.tiers import resolve
