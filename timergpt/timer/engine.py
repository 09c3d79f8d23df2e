"""Timer state engine.

Owns the authoritative in-memory table of timers and implements the state
machine:

    running --pause--> paused --resume--> running
    running|paused --extend--> running|paused|completed
    running --(ends_at <= now, on reconciliation)--> completed
    * --cancel--> cancelled

There is no background scheduler. Expiry is detected lazily by
``complete_expiring_timers`` which callers run before every operation.

Every mutation updates the table synchronously and then dispatches the full
snapshot to ``on_change``. Those persistence calls run as an ordered chain of
tasks; failures are kept and raised once from ``wait_for_persistence``.
"""
import asyncio
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable

from loguru import logger

from .errors import (
    CapacityExceededError,
    InvalidTransitionError,
    PersistenceError,
    TimerNotFoundError,
    TimerValidationError,
)
from .timing import add_ms, describe_delta, format_duration, minutes_left, remaining_ms, utc_now
from .types import (
    Timer,
    TimerCategory,
    TimerRepeat,
    TimerStatus,
    TimerUpdateResult,
)

logger = logger.bind(module="timer.engine")

DEFAULT_MAX_CONCURRENT = 5

# Undelivered write failures kept for wait_for_persistence; older ones are dropped
MAX_PENDING_ERRORS = 10

# Never-started timers sort first
_UNSTARTED = datetime.min.replace(tzinfo=timezone.utc)

OnChangeCallback = Callable[[list[Timer]], Awaitable[None]]
Clock = Callable[[], datetime]


class TimerEngine:
    """In-memory timer table with lazy expiry and async persistence."""

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        initial_timers: list[Timer] | None = None,
        on_change: OnChangeCallback | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize the engine.

        Args:
            max_concurrent: Maximum number of active (scheduled/running/paused) timers
            initial_timers: Timers loaded from storage
            on_change: Called with the full snapshot after every mutation
            clock: Source of "now", injectable for tests
        """
        self.max_concurrent = max_concurrent
        self.on_change = on_change
        self.clock = clock
        self._timers: dict[str, Timer] = {}
        self._pending_persist: asyncio.Task | None = None
        self._persist_errors: deque[PersistenceError] = deque(maxlen=MAX_PENDING_ERRORS)

        if initial_timers:
            now = self.clock()
            for timer in initial_timers:
                normalized = self._normalize(timer, now)
                self._timers[normalized.id] = normalized
            logger.info(f"Engine restored {len(self._timers)} timers")

    # ============== Queries ==============

    def get_all(self) -> list[Timer]:
        """All timers ordered by start time (never-started first)."""
        return sorted(self._timers.values(), key=lambda t: t.started_at or _UNSTARTED)

    def get_active(self) -> list[Timer]:
        return [t for t in self.get_all() if t.is_active]

    def find_by_id(self, timer_id: str) -> Timer | None:
        return self._timers.get(timer_id)

    def suggest_label(self) -> str:
        """Lowest-numbered 'Timer N' label not already in use."""
        occupied = {t.label for t in self._timers.values()}
        counter = 1
        while f"Timer {counter}" in occupied:
            counter += 1
        return f"Timer {counter}"

    # ============== Operations ==============

    def start(
        self,
        duration_ms: int,
        label: str | None = None,
        category: TimerCategory | None = None,
        repeat: TimerRepeat | None = None,
    ) -> TimerUpdateResult:
        """Create a new running timer."""
        if duration_ms <= 0:
            raise TimerValidationError("Timers must be at least 1 second long.")
        if len(self.get_active()) >= self.max_concurrent:
            raise CapacityExceededError(self.max_concurrent)

        now = self.clock()
        timer = Timer(
            id=str(uuid.uuid4()),
            label=label or self.suggest_label(),
            duration_ms=duration_ms,
            remaining_ms=duration_ms,
            status=TimerStatus.RUNNING,
            started_at=now,
            ends_at=add_ms(now, duration_ms),
            repeat=repeat,
            category=category or TimerCategory.CUSTOM,
        )
        self._commit(timer)
        logger.info(f"Started timer {timer.id} ({timer.label}, {duration_ms}ms)")

        return TimerUpdateResult(
            timer=timer,
            message=f"Started {timer.label} for {format_duration(round(duration_ms / 1000))}.",
        )

    def pause(self, timer_id: str) -> TimerUpdateResult:
        timer = self._require(timer_id)
        if timer.status != TimerStatus.RUNNING:
            raise InvalidTransitionError("Only running timers can be paused.")

        now = self.clock()
        left = remaining_ms(timer, now)
        if left == 0:
            # Expired but not yet reconciled; a paused timer never holds 0 ms
            finished = replace(timer, status=TimerStatus.COMPLETED, remaining_ms=0, ends_at=now)
            self._commit(finished)
            return TimerUpdateResult(
                timer=finished,
                message=f"{timer.label} finished before it could be paused.",
            )

        updated = replace(timer, status=TimerStatus.PAUSED, remaining_ms=left, ends_at=None)
        self._commit(updated)

        return TimerUpdateResult(
            timer=updated,
            message=f"{timer.label} paused with {minutes_left(left)} minutes left.",
        )

    def resume(self, timer_id: str) -> TimerUpdateResult:
        timer = self._require(timer_id)
        if timer.status != TimerStatus.PAUSED:
            raise InvalidTransitionError("Only paused timers can be resumed.")

        now = self.clock()
        updated = replace(
            timer,
            status=TimerStatus.RUNNING,
            started_at=timer.started_at or now,
            ends_at=add_ms(now, timer.remaining_ms),
        )
        self._commit(updated)

        return TimerUpdateResult(
            timer=updated,
            message=f"{timer.label} resumed. {minutes_left(timer.remaining_ms)} minutes remaining.",
        )

    def cancel(self, timer_id: str) -> TimerUpdateResult:
        """Cancel a timer.

        Terminal timers are not protected: cancelling a completed timer
        overwrites it as cancelled.
        """
        timer = self._require(timer_id)
        updated = replace(timer, status=TimerStatus.CANCELLED, remaining_ms=0, ends_at=None)
        self._commit(updated)

        return TimerUpdateResult(timer=updated, message=f"{timer.label} cancelled.")

    def extend(self, timer_id: str, delta_ms: int) -> TimerUpdateResult:
        """Add (or with a negative delta, remove) time from an active timer.

        Reaching zero completes the timer immediately.
        """
        timer = self._require(timer_id)
        if timer.status not in (TimerStatus.RUNNING, TimerStatus.PAUSED):
            raise InvalidTransitionError("Only active timers can be extended.")

        now = self.clock()
        new_remaining = max(remaining_ms(timer, now) + delta_ms, 0)

        if new_remaining == 0:
            updated = replace(timer, status=TimerStatus.COMPLETED, remaining_ms=0, ends_at=now)
            message = f"{timer.label} finished after the adjustment."
        else:
            if timer.status == TimerStatus.RUNNING:
                updated = replace(timer, remaining_ms=new_remaining, ends_at=add_ms(now, new_remaining))
            else:
                updated = replace(timer, remaining_ms=new_remaining)
            verb = "extended" if delta_ms >= 0 else "shortened"
            message = f"{timer.label} {verb} by {describe_delta(delta_ms)}."

        self._commit(updated)
        return TimerUpdateResult(timer=updated, message=message)

    def complete_expiring_timers(self, now: datetime | None = None) -> list[Timer]:
        """Mark every running timer whose end time has passed as completed.

        Args:
            now: Reconciliation instant (defaults to the engine clock)

        Returns:
            The timers that transitioned during this call
        """
        if now is None:
            now = self.clock()

        completed = []
        for timer in list(self._timers.values()):
            if (timer.status == TimerStatus.RUNNING
                    and timer.ends_at is not None
                    and timer.ends_at <= now):
                finished = replace(timer, status=TimerStatus.COMPLETED, remaining_ms=0, ends_at=now)
                self._timers[timer.id] = finished
                completed.append(finished)

        if completed:
            logger.info(f"Completed {len(completed)} expired timers")
            self._emit_change()
        return completed

    # ============== Persistence ==============

    async def wait_for_persistence(self) -> None:
        """Wait for the latest snapshot write.

        Callers with an ``on_change`` callback should drain failures through
        this method. Only the newest ``MAX_PENDING_ERRORS`` undelivered
        failures are kept.

        Raises:
            PersistenceError: the oldest write failure not yet reported.
                Each failure is raised once.
        """
        if self._pending_persist is not None:
            await self._pending_persist

        if self._persist_errors:
            raise self._persist_errors.popleft()

    def _emit_change(self) -> None:
        if self.on_change is None:
            return

        snapshot = self.get_all()
        previous = self._pending_persist
        self._pending_persist = asyncio.get_running_loop().create_task(
            self._persist(previous, snapshot)
        )

    async def _persist(self, previous: asyncio.Task | None, snapshot: list[Timer]) -> None:
        if previous is not None:
            # _persist never raises, so this only waits for the predecessor
            await previous
        try:
            await self.on_change(snapshot)
        except Exception as e:
            logger.error(f"Timer persistence failed: {e}")
            if not isinstance(e, PersistenceError):
                wrapped = PersistenceError(f"Could not save timers: {e}")
                wrapped.__cause__ = e
                e = wrapped
            self._persist_errors.append(e)

    # ============== Internals ==============

    def _commit(self, timer: Timer) -> None:
        self._timers[timer.id] = timer
        logger.debug(f"Timer {timer.id} -> {timer.status.value}")
        self._emit_change()

    def _require(self, timer_id: str) -> Timer:
        timer = self._timers.get(timer_id)
        if timer is None:
            raise TimerNotFoundError(timer_id)
        return timer

    def _normalize(self, timer: Timer, now: datetime) -> Timer:
        """Repair a loaded timer.

        Expired running timers are left running so the next reconciliation
        reports them as completions.
        """
        if timer.status == TimerStatus.RUNNING:
            if timer.ends_at is None:
                return replace(timer, ends_at=add_ms(now, timer.remaining_ms))
            left = remaining_ms(timer, now)
            if left > 0:
                return replace(timer, remaining_ms=left)
            return timer
        if timer.status == TimerStatus.PAUSED and timer.ends_at is not None:
            return replace(timer, ends_at=None)
        return timer
