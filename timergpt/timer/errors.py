"""Errors raised by the timer engine and tool facade."""


class TimerError(Exception):
    """Base class for timer errors.

    ``completed`` holds the timers that finished while the failed call
    reconciled expiries, so the caller can still announce them.
    """
    code = "timer_error"
    completed: tuple = ()


class CapacityExceededError(TimerError):
    """Too many active timers to start another one."""
    code = "capacity_exceeded"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"You already have {limit} active timers. Cancel one before starting another."
        )


class TimerNotFoundError(TimerError):
    """No timer with the given id."""
    code = "not_found"

    def __init__(self, timer_id: str):
        self.timer_id = timer_id
        super().__init__("Timer not found.")


class InvalidTransitionError(TimerError):
    """Operation not allowed in the timer's current status."""
    code = "invalid_transition"


class TimerValidationError(TimerError, ValueError):
    """Malformed duration or adjustment input."""
    code = "validation_error"


class DurationParseError(TimerValidationError):
    """A duration string could not be parsed."""


class PersistenceError(TimerError):
    """Reading or writing the timer snapshot failed."""
    code = "persistence_failure"
