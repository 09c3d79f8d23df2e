"""Timer package.

- types.py: Timer record, status enums, result types
- timing.py: remaining-time calculation and formatting
- duration_parser.py: natural language durations
- store.py: JSON snapshot persistence
- engine.py: timer state machine
- tools.py: tool-call facade
"""
from .engine import TimerEngine
from .errors import (
    CapacityExceededError,
    DurationParseError,
    InvalidTransitionError,
    PersistenceError,
    TimerError,
    TimerNotFoundError,
    TimerValidationError,
)
from .store import TimerFileStorage, TimerStorage
from .tools import AdjustTimerInput, StartTimerInput, TimerToolset
from .types import Timer, TimerCategory, TimerListResult, TimerRepeat, TimerStatus, TimerUpdateResult

__all__ = [
    "TimerEngine",
    "TimerToolset",
    "TimerFileStorage",
    "TimerStorage",
    "StartTimerInput",
    "AdjustTimerInput",
    "Timer",
    "TimerCategory",
    "TimerRepeat",
    "TimerStatus",
    "TimerUpdateResult",
    "TimerListResult",
    "TimerError",
    "CapacityExceededError",
    "DurationParseError",
    "InvalidTransitionError",
    "PersistenceError",
    "TimerNotFoundError",
    "TimerValidationError",
]
