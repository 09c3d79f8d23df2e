"""Core type definitions for the timer system.

This module defines:
- Timer status and category enums
- The Timer record and its repeat metadata
- Result types returned by the engine and the tool facade
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ============== Enums ==============

class TimerStatus(str, Enum):
    """Status of a timer."""
    SCHEDULED = "scheduled"   # Reserved, not produced by current operations
    RUNNING = "running"       # Counting down, ends_at is set
    PAUSED = "paused"         # Frozen, remaining_ms is authoritative
    COMPLETED = "completed"   # Ran out (naturally or by adjustment)
    CANCELLED = "cancelled"   # Stopped by the user


ACTIVE_STATUSES = frozenset({TimerStatus.SCHEDULED, TimerStatus.RUNNING, TimerStatus.PAUSED})


class TimerCategory(str, Enum):
    """Category of a timer."""
    FOCUS = "focus"
    BREAK = "break"
    CUSTOM = "custom"


# ============== Timestamp helpers ==============

def format_timestamp(dt: datetime) -> str:
    """Format an aware datetime as ISO-8601 with millisecond precision.

    Always millisecond precision, whatever the loaded text used: a
    second-precision record is rewritten as ``...:00.000+00:00`` on its first
    save and is stable after that.
    """
    return dt.isoformat(timespec="milliseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values and 'Z' as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ============== Timer ==============

@dataclass
class TimerRepeat:
    """Repeat metadata. Stored with the timer but never executed."""
    interval_ms: int = 0
    occurrences: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"intervalMs": self.interval_ms}
        if self.occurrences is not None:
            d["occurrences"] = self.occurrences
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimerRepeat":
        return cls(
            interval_ms=data.get("intervalMs", 0),
            occurrences=data.get("occurrences"),
        )


@dataclass
class Timer:
    """A single countdown timer.

    Records are treated as immutable values: every transition produces a new
    Timer via ``dataclasses.replace`` so snapshots handed to persistence never
    change underneath it.

    For running timers ``remaining_ms`` is only the last cached value; the live
    value is derived from ``ends_at`` (see ``timing.remaining_ms``).
    """
    id: str
    label: str
    duration_ms: int
    remaining_ms: int
    status: TimerStatus = TimerStatus.RUNNING
    started_at: datetime | None = None
    ends_at: datetime | None = None
    repeat: TimerRepeat | None = None
    category: TimerCategory = TimerCategory.CUSTOM

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted (camelCase) representation."""
        d: dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "durationMs": self.duration_ms,
            "remainingMs": self.remaining_ms,
            "status": self.status.value,
        }
        if self.started_at is not None:
            d["startedAt"] = format_timestamp(self.started_at)
        if self.ends_at is not None:
            d["endsAt"] = format_timestamp(self.ends_at)
        if self.repeat is not None:
            d["repeat"] = self.repeat.to_dict()
        d["category"] = self.category.value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Timer":
        """Create from the persisted representation."""
        return cls(
            id=data["id"],
            label=data.get("label", ""),
            duration_ms=int(data.get("durationMs", 0)),
            remaining_ms=int(data.get("remainingMs", 0)),
            status=TimerStatus(data.get("status", "running")),
            started_at=parse_timestamp(data["startedAt"]) if data.get("startedAt") else None,
            ends_at=parse_timestamp(data["endsAt"]) if data.get("endsAt") else None,
            repeat=TimerRepeat.from_dict(data["repeat"]) if data.get("repeat") else None,
            category=TimerCategory(data.get("category") or "custom"),
        )


# ============== Result Types ==============

@dataclass
class TimerUpdateResult:
    """Result of a single timer operation."""
    timer: Timer
    message: str
    completed: list[Timer] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timer": self.timer.to_dict(),
            "message": self.message,
            "completed": [t.to_dict() for t in self.completed],
        }


@dataclass
class TimerListResult:
    """Result of listing timers (which also reconciles expiries)."""
    timers: list[Timer]
    completed: list[Timer] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "timers": [t.to_dict() for t in self.timers],
            "completed": [t.to_dict() for t in self.completed],
            "message": self.message,
        }
