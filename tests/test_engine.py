"""Tests for the timer state engine."""
from datetime import timedelta

import pytest

from timergpt.timer.engine import MAX_PENDING_ERRORS, TimerEngine
from timergpt.timer.errors import (
    CapacityExceededError,
    InvalidTransitionError,
    PersistenceError,
    TimerNotFoundError,
    TimerValidationError,
)
from timergpt.timer.timing import remaining_ms
from timergpt.timer.types import Timer, TimerCategory, TimerRepeat, TimerStatus


@pytest.fixture
def engine(clock):
    return TimerEngine(clock=clock)


class TestStart:
    """Tests for creating timers."""

    def test_start_creates_running_timer(self, engine, clock):
        t0 = clock.now
        result = engine.start(60000, label="Focus", category=TimerCategory.FOCUS)
        timer = result.timer

        assert timer.status == TimerStatus.RUNNING
        assert timer.label == "Focus"
        assert timer.duration_ms == 60000
        assert timer.remaining_ms == 60000
        assert timer.started_at == t0
        assert timer.ends_at == t0 + timedelta(seconds=60)
        assert timer.category == TimerCategory.FOCUS
        assert result.message == "Started Focus for 1 minute."
        assert engine.find_by_id(timer.id) == timer

    def test_default_label_and_category(self, engine):
        first = engine.start(1000).timer
        second = engine.start(1000).timer

        assert first.label == "Timer 1"
        assert second.label == "Timer 2"
        assert first.category == TimerCategory.CUSTOM

    def test_suggest_label_skips_taken_labels(self, engine):
        engine.start(1000, label="Timer 1")
        engine.start(1000, label="Timer 3")

        assert engine.suggest_label() == "Timer 2"

    def test_repeat_is_stored(self, engine):
        timer = engine.start(1000, repeat=TimerRepeat(interval_ms=300000, occurrences=3)).timer

        assert timer.repeat == TimerRepeat(interval_ms=300000, occurrences=3)

    def test_zero_duration_rejected(self, engine):
        with pytest.raises(TimerValidationError):
            engine.start(0)

    def test_fifth_timer_allowed_sixth_rejected(self, engine):
        for _ in range(4):
            engine.start(60000)
        engine.start(60000)  # 5th from 4 succeeds

        with pytest.raises(CapacityExceededError) as exc_info:
            engine.start(60000)
        assert "5 active timers" in str(exc_info.value)

    def test_paused_timers_count_as_active(self, engine):
        ids = [engine.start(60000).timer.id for _ in range(5)]
        engine.pause(ids[0])

        with pytest.raises(CapacityExceededError):
            engine.start(60000)

    def test_terminal_timers_free_capacity(self, engine):
        ids = [engine.start(60000).timer.id for _ in range(5)]
        engine.cancel(ids[0])
        engine.extend(ids[1], -60000)

        engine.start(60000)
        engine.start(60000)
        assert len(engine.get_active()) == 5
        assert len(engine.get_all()) == 7

    def test_custom_limit(self, clock):
        engine = TimerEngine(max_concurrent=1, clock=clock)
        engine.start(1000)

        with pytest.raises(CapacityExceededError):
            engine.start(1000)


class TestPauseResume:
    """Tests for pause and resume."""

    def test_pause_then_resume_preserves_remaining(self, engine, clock):
        t0 = clock.now
        timer = engine.start(60000).timer

        clock.advance(5000)
        paused = engine.pause(timer.id)
        assert paused.timer.status == TimerStatus.PAUSED
        assert paused.timer.remaining_ms == 55000
        assert paused.timer.ends_at is None
        assert paused.message == "Timer 1 paused with 1 minutes left."

        clock.advance(15000)
        resumed = engine.resume(timer.id)
        assert resumed.timer.status == TimerStatus.RUNNING
        assert resumed.timer.ends_at == t0 + timedelta(seconds=20) + timedelta(milliseconds=55000)
        assert resumed.timer.started_at == t0
        assert remaining_ms(resumed.timer, clock.now) == 55000

    def test_pause_after_expiry_completes_instead(self, engine, clock):
        timer = engine.start(10000, label="Tea").timer

        clock.advance(12000)
        result = engine.pause(timer.id)

        assert result.timer.status == TimerStatus.COMPLETED
        assert result.timer.remaining_ms == 0
        assert result.timer.ends_at == clock.now
        assert result.message == "Tea finished before it could be paused."
        assert engine.complete_expiring_timers() == []

    def test_pause_requires_running(self, engine):
        timer = engine.start(60000).timer
        engine.pause(timer.id)

        with pytest.raises(InvalidTransitionError, match="Only running timers can be paused."):
            engine.pause(timer.id)

    def test_resume_requires_paused(self, engine):
        timer = engine.start(60000).timer

        with pytest.raises(InvalidTransitionError, match="Only paused timers can be resumed."):
            engine.resume(timer.id)

    def test_unknown_id(self, engine):
        with pytest.raises(TimerNotFoundError, match="Timer not found."):
            engine.pause("missing")
        with pytest.raises(TimerNotFoundError):
            engine.cancel("missing")


class TestCancel:
    """Tests for cancellation."""

    def test_cancel_running(self, engine):
        timer = engine.start(60000, label="Tea").timer
        result = engine.cancel(timer.id)

        assert result.timer.status == TimerStatus.CANCELLED
        assert result.timer.remaining_ms == 0
        assert result.timer.ends_at is None
        assert result.message == "Tea cancelled."

    def test_cancel_completed_overwrites(self, engine):
        timer = engine.start(10000).timer
        engine.extend(timer.id, -10000)

        result = engine.cancel(timer.id)
        assert result.timer.status == TimerStatus.CANCELLED


class TestExtend:
    """Tests for extend/shorten."""

    def test_negative_extend_completes_immediately(self, engine, clock):
        timer = engine.start(10000).timer
        clock.advance(2000)

        result = engine.extend(timer.id, -10000)

        assert result.timer.status == TimerStatus.COMPLETED
        assert result.timer.remaining_ms == 0
        assert result.timer.ends_at == clock.now
        assert result.message == "Timer 1 finished after the adjustment."

    def test_extend_running_moves_end(self, engine, clock):
        timer = engine.start(60000, label="Bake").timer
        clock.advance(10000)

        result = engine.extend(timer.id, 300000)

        assert result.timer.status == TimerStatus.RUNNING
        assert result.timer.remaining_ms == 350000
        assert result.timer.ends_at == clock.now + timedelta(milliseconds=350000)
        assert result.timer.duration_ms == 60000
        assert result.message == "Bake extended by 5 minutes."

    def test_shorten_paused_only_changes_remaining(self, engine, clock):
        timer = engine.start(120000, label="Nap").timer
        engine.pause(timer.id)

        result = engine.extend(timer.id, -90000)

        assert result.timer.status == TimerStatus.PAUSED
        assert result.timer.remaining_ms == 30000
        assert result.timer.ends_at is None
        assert result.message == "Nap shortened by 1m 30s."

    def test_extend_terminal_rejected(self, engine):
        timer = engine.start(60000).timer
        engine.cancel(timer.id)

        with pytest.raises(InvalidTransitionError, match="Only active timers can be extended."):
            engine.extend(timer.id, 1000)


class TestReconciliation:
    """Tests for lazy expiry."""

    def test_expired_running_timers_complete(self, engine, clock):
        short = engine.start(10000).timer
        long = engine.start(60000).timer
        paused = engine.start(5000).timer
        engine.pause(paused.id)

        now = clock.advance(15000)
        completed = engine.complete_expiring_timers()

        assert [t.id for t in completed] == [short.id]
        assert completed[0].status == TimerStatus.COMPLETED
        assert completed[0].remaining_ms == 0
        assert completed[0].ends_at == now
        assert engine.find_by_id(long.id).status == TimerStatus.RUNNING
        assert engine.find_by_id(paused.id).status == TimerStatus.PAUSED

    def test_explicit_now(self, engine, clock):
        timer = engine.start(1000).timer

        assert engine.complete_expiring_timers(clock.now) == []
        completed = engine.complete_expiring_timers(clock.now + timedelta(seconds=1))
        assert completed[0].id == timer.id

    def test_remaining_never_negative(self, engine, clock):
        timer = engine.start(1000).timer

        assert remaining_ms(timer, clock.now + timedelta(hours=1)) == 0
        assert remaining_ms(timer, clock.now) == 1000


class TestInitialTimers:
    """Tests for restoring persisted timers."""

    def _timer(self, **kwargs) -> Timer:
        defaults = dict(id="a", label="A", duration_ms=60000, remaining_ms=60000)
        defaults.update(kwargs)
        return Timer(**defaults)

    def test_expired_running_timer_left_for_reconciliation(self, clock):
        stale = self._timer(
            status=TimerStatus.RUNNING,
            started_at=clock.now - timedelta(minutes=5),
            ends_at=clock.now - timedelta(minutes=4),
        )
        engine = TimerEngine(initial_timers=[stale], clock=clock)

        assert engine.find_by_id("a").status == TimerStatus.RUNNING
        completed = engine.complete_expiring_timers()
        assert [t.id for t in completed] == ["a"]

    def test_running_timer_cache_refreshed(self, clock):
        timer = self._timer(
            status=TimerStatus.RUNNING,
            started_at=clock.now - timedelta(seconds=20),
            ends_at=clock.now + timedelta(seconds=40),
        )
        engine = TimerEngine(initial_timers=[timer], clock=clock)

        assert engine.find_by_id("a").remaining_ms == 40000

    def test_paused_timer_loses_end(self, clock):
        timer = self._timer(status=TimerStatus.PAUSED, ends_at=clock.now)
        engine = TimerEngine(initial_timers=[timer], clock=clock)

        assert engine.find_by_id("a").ends_at is None

    def test_get_all_orders_by_start(self, clock):
        timers = [
            self._timer(id="late", started_at=clock.now, ends_at=clock.now + timedelta(minutes=1)),
            self._timer(id="never", status=TimerStatus.SCHEDULED),
            self._timer(id="early", started_at=clock.now - timedelta(minutes=1),
                        ends_at=clock.now + timedelta(minutes=1)),
        ]
        engine = TimerEngine(initial_timers=timers, clock=clock)

        assert [t.id for t in engine.get_all()] == ["never", "early", "late"]


class TestPersistence:
    """Tests for snapshot dispatch and error delivery."""

    @pytest.mark.asyncio
    async def test_every_mutation_emits_full_snapshot(self, clock):
        snapshots = []

        async def record(timers):
            snapshots.append([(t.label, t.status) for t in timers])

        engine = TimerEngine(on_change=record, clock=clock)
        first = engine.start(60000, label="A").timer
        clock.advance(1)
        engine.start(60000, label="B")
        engine.pause(first.id)
        await engine.wait_for_persistence()

        assert snapshots == [
            [("A", TimerStatus.RUNNING)],
            [("A", TimerStatus.RUNNING), ("B", TimerStatus.RUNNING)],
            [("A", TimerStatus.PAUSED), ("B", TimerStatus.RUNNING)],
        ]

    @pytest.mark.asyncio
    async def test_failure_delivered_once(self, clock):
        calls = []

        async def flaky(timers):
            calls.append(len(timers))
            if len(calls) == 1:
                raise OSError("disk full")

        engine = TimerEngine(on_change=flaky, clock=clock)
        timer = engine.start(60000).timer

        with pytest.raises(PersistenceError, match="disk full"):
            await engine.wait_for_persistence()
        await engine.wait_for_persistence()

        # The mutation stayed applied in memory
        assert engine.find_by_id(timer.id).status == TimerStatus.RUNNING

        engine.pause(timer.id)
        await engine.wait_for_persistence()
        assert calls == [1, 1]

    @pytest.mark.asyncio
    async def test_undrained_failures_are_bounded(self, clock):
        async def broken(timers):
            raise OSError("disk full")

        engine = TimerEngine(max_concurrent=MAX_PENDING_ERRORS + 5, on_change=broken, clock=clock)
        for _ in range(MAX_PENDING_ERRORS + 5):
            engine.start(60000)

        delivered = 0
        while True:
            try:
                await engine.wait_for_persistence()
            except PersistenceError:
                delivered += 1
            else:
                break

        assert delivered == MAX_PENDING_ERRORS
        assert len(engine.get_active()) == MAX_PENDING_ERRORS + 5

    @pytest.mark.asyncio
    async def test_tick_without_changes_does_not_persist(self, clock):
        calls = []

        async def record(timers):
            calls.append(timers)

        engine = TimerEngine(on_change=record, clock=clock)
        assert engine.complete_expiring_timers() == []
        await engine.wait_for_persistence()
        assert calls == []
