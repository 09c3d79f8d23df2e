"""Time calculation utilities.

Remaining time is always derived from wall-clock timestamps, never from a
live countdown.
"""
import math
from datetime import datetime, timedelta, timezone

from .types import Timer, TimerStatus

_ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    """Get the current UTC time truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def add_ms(dt: datetime, ms: int) -> datetime:
    return dt + timedelta(milliseconds=ms)


def ms_between(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end (negative if end is earlier)."""
    return (end - start) // _ONE_MS


def remaining_ms(timer: Timer, now: datetime | None = None) -> int:
    """Compute the time left on a timer at ``now``.

    Running timers: ``max(ends_at - now, 0)``. Everything else: the cached
    ``remaining_ms``.
    """
    if timer.status != TimerStatus.RUNNING or timer.ends_at is None:
        return timer.remaining_ms
    if now is None:
        now = utc_now()
    return max(ms_between(now, timer.ends_at), 0)


def minutes_left(ms: int) -> int:
    """Minutes rounded up, as shown in status messages."""
    return math.ceil(ms / 60000)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'}"


def describe_delta(delta_ms: int) -> str:
    """Convert an adjustment to text like '5 minutes', '1m 30s' or '10 seconds'."""
    total = abs(delta_ms)
    minutes = total // 60000
    seconds = (total % 60000) // 1000

    if minutes > 0 and seconds > 0:
        return f"{minutes}m {seconds}s"
    if minutes > 0:
        return _plural(minutes, "minute")
    return _plural(seconds, "second")


def format_duration(total_seconds: int) -> str:
    """Convert seconds to text like '1 minute and 30 seconds'."""
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    parts = []
    if minutes > 0:
        parts.append(_plural(minutes, "minute"))
    if seconds > 0:
        parts.append(_plural(seconds, "second"))

    if not parts:
        return "0 seconds"
    return " and ".join(parts)


def format_remaining(ms: int) -> str:
    """Compact remaining time, e.g. '4m 30s', '2m' or '45s'."""
    total_seconds = max(round(ms / 1000), 0)
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    if minutes > 0 and seconds > 0:
        return f"{minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"
