"""Tool facade over the timer engine.

Validates tool-call arguments, runs expiry reconciliation before every
operation, decorates timers with their live remaining time and reports every
timer that finished during the call.
"""
from dataclasses import replace
from datetime import datetime
from typing import Annotated, Callable, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .duration_parser import parse_duration_seconds
from .engine import TimerEngine
from .errors import PersistenceError, TimerError, TimerValidationError
from .timing import format_remaining, remaining_ms
from .types import (
    Timer,
    TimerCategory,
    TimerListResult,
    TimerRepeat,
    TimerStatus,
    TimerUpdateResult,
)

logger = logger.bind(module="timer.tools")

MAX_DURATION_SECONDS = 3600


# ============== Input Schemas ==============

class DurationInput(BaseModel):
    """Structured duration."""
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0, le=59)

    @model_validator(mode="after")
    def _at_least_one_second(self) -> "DurationInput":
        if self.minutes == 0 and self.seconds == 0:
            raise TimerValidationError("Timers must be at least 1 second long.")
        return self

    @property
    def total_ms(self) -> int:
        return self.minutes * 60000 + self.seconds * 1000


class RepeatInput(BaseModel):
    interval_minutes: int = Field(ge=1)
    occurrences: int | None = Field(default=None, ge=1, le=12)

    def to_repeat(self) -> TimerRepeat:
        return TimerRepeat(interval_ms=self.interval_minutes * 60000, occurrences=self.occurrences)


class StartTimerInput(BaseModel):
    """Arguments of the start tool.

    ``duration`` is a {minutes, seconds} object, a number of seconds, or a
    phrase like "5 minutes" / "1m 30s" / "2:00".
    """
    label: str | None = Field(default=None, min_length=1, max_length=48)
    category: Literal["focus", "break", "custom"] | None = None
    duration: DurationInput | Annotated[int, Field(gt=0, le=MAX_DURATION_SECONDS)]
    repeat: RepeatInput | None = None

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration_text(cls, value):
        if isinstance(value, str):
            return parse_duration_seconds(value)
        return value

    @property
    def duration_ms(self) -> int:
        if isinstance(self.duration, DurationInput):
            return self.duration.total_ms
        return self.duration * 1000


class AdjustTimerInput(BaseModel):
    """Arguments of the extend tool. Negative values shorten the timer."""
    id: str = Field(min_length=1)
    minutes: int | None = Field(default=None, ge=-120, le=120)
    seconds: int | None = Field(default=None, ge=-59, le=59)

    @model_validator(mode="after")
    def _non_zero(self) -> "AdjustTimerInput":
        if (self.minutes or 0) == 0 and (self.seconds or 0) == 0:
            raise TimerValidationError("Adjustments must change the timer by at least one second.")
        return self

    @property
    def delta_ms(self) -> int:
        return (self.minutes or 0) * 60000 + (self.seconds or 0) * 1000


def _validate(model: type[BaseModel], data):
    """Validate tool arguments, converting pydantic errors to TimerValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = e.errors()
        for error in errors:
            cause = error.get("ctx", {}).get("error")
            if isinstance(cause, TimerValidationError):
                raise cause from e
        message = errors[0].get("msg", "Invalid input.")
        # pydantic prefixes errors raised from validators
        message = message.removeprefix("Value error, ")
        raise TimerValidationError(message) from e


def completion_summary(timers: list[Timer]) -> str:
    """Sentence naming finished timers, e.g. 'Tea, Timer 2 finished.'"""
    if not timers:
        return ""
    return f"{', '.join(t.label for t in timers)} finished."


# ============== Toolset ==============

class TimerToolset:
    """Tool-call entry points.

    Every call reconciles expired timers first and returns them in
    ``completed`` so no completion is lost between calls. When a call fails
    after reconciling, the raised ``TimerError`` carries them instead.
    """

    def __init__(self, engine: TimerEngine | None = None):
        self.engine = engine or TimerEngine()

    def get_snapshot(self) -> list[Timer]:
        """All timers with live remaining time, without reconciling."""
        return [self._decorate(t) for t in self.engine.get_all()]

    async def handle_tick(self, now: datetime | None = None) -> list[Timer]:
        """Complete expired timers and wait for the resulting write."""
        completed = self._reconcile(now)
        if completed:
            await self._settle(completed)
        return completed

    async def list_timers(self) -> TimerListResult:
        completed = self._reconcile()
        timers = self.get_snapshot()
        await self._settle(completed)
        return TimerListResult(
            timers=timers,
            completed=completed,
            message=self._join(self._list_message(timers), completion_summary(completed)),
        )

    async def start_timer(self, data: StartTimerInput | dict) -> TimerUpdateResult:
        def start() -> TimerUpdateResult:
            parsed = _validate(StartTimerInput, data)
            return self.engine.start(
                duration_ms=parsed.duration_ms,
                label=parsed.label,
                category=TimerCategory(parsed.category) if parsed.category else None,
                repeat=parsed.repeat.to_repeat() if parsed.repeat else None,
            )

        return await self._run(start)

    async def pause_timer(self, timer_id: str) -> TimerUpdateResult:
        return await self._run(lambda: self.engine.pause(timer_id))

    async def resume_timer(self, timer_id: str) -> TimerUpdateResult:
        return await self._run(lambda: self.engine.resume(timer_id))

    async def cancel_timer(self, timer_id: str) -> TimerUpdateResult:
        return await self._run(lambda: self.engine.cancel(timer_id))

    async def extend_timer(self, data: AdjustTimerInput | dict) -> TimerUpdateResult:
        def extend() -> TimerUpdateResult:
            parsed = _validate(AdjustTimerInput, data)
            return self.engine.extend(parsed.id, parsed.delta_ms)

        return await self._run(extend)

    # ============== Helpers ==============

    def _reconcile(self, now: datetime | None = None) -> list[Timer]:
        completed = self.engine.complete_expiring_timers(now)
        if completed:
            logger.debug(f"Tick completed {[t.id for t in completed]}")
        return [self._decorate(t) for t in completed]

    async def _settle(self, completed: list[Timer]) -> None:
        """Wait for pending writes; a failure still reports ``completed``."""
        try:
            await self.engine.wait_for_persistence()
        except PersistenceError as e:
            e.completed = completed
            raise

    async def _run(self, operation: Callable[[], TimerUpdateResult]) -> TimerUpdateResult:
        """Reconcile, apply ``operation``, then wait once for every write it caused."""
        completed = self._reconcile()
        try:
            result = operation()
        except TimerError as e:
            e.completed = completed
            raise

        decorated = self._decorate(result.timer)
        merged = self._merge_completed(completed, decorated)
        await self._settle(merged)

        others = [t for t in completed if t.id != decorated.id]
        return TimerUpdateResult(
            timer=decorated,
            message=self._join(result.message, completion_summary(others)),
            completed=merged,
        )

    def _decorate(self, timer: Timer) -> Timer:
        if timer.status != TimerStatus.RUNNING or timer.ends_at is None:
            return timer
        return replace(timer, remaining_ms=remaining_ms(timer, self.engine.clock()))

    @staticmethod
    def _merge_completed(completed: list[Timer], candidate: Timer) -> list[Timer]:
        if candidate.status != TimerStatus.COMPLETED:
            return completed
        if any(t.id == candidate.id for t in completed):
            return completed
        return [*completed, candidate]

    @staticmethod
    def _list_message(timers: list[Timer]) -> str:
        active = [t for t in timers if t.is_active]
        if not active:
            return "No active timers."
        parts = [f"{t.label} ({t.status.value}, {format_remaining(t.remaining_ms)} left)" for t in active]
        return f"Active timers: {'; '.join(parts)}."

    @staticmethod
    def _join(*sentences: str) -> str:
        return " ".join(s for s in sentences if s)
