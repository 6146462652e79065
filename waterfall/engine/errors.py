"""
Engine error taxonomy.

  - ConfigError        → malformed waterfall configuration, raised before a run starts
  - ConflictError      → a non-terminal run already exists for the (lane, load) key
  - InvalidStateError  → a mutator was called in a state that does not allow it

None of these are retried by the engine. Mutators validate before they mutate,
so raising any of them leaves RunState untouched.
"""
from typing import List


class WaterfallError(Exception):
    """Base class for every error raised by the dispatch engine."""


class ConfigError(WaterfallError):
    """Raised when a lane's waterfall configuration cannot be resolved into stages."""
    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__('; '.join(self.errors))


class ConflictError(WaterfallError):
    """Raised when a run is already active for a lane/load pair."""
    def __init__(self, lane_id, load_id):
        self.lane_id = lane_id
        self.load_id = load_id
        super().__init__(f"A dispatch is already running for lane '{lane_id}' / load '{load_id}'")


class InvalidStateError(WaterfallError):
    """Raised when a runner mutator is called from a state that forbids it."""
    def __init__(self, message, status=None):
        self.status = status
        super().__init__(message)
