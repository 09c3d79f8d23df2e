"""Natural language parser for timer durations.

Accepts:
- ``mm:ss`` ("5:30")
- unit phrases, additive ("1 hour 5 min", "1m and 30s", "1.5 minutes")
- bare positive numbers, read as seconds ("90")
"""
import math
import re

from .errors import DurationParseError

# Seconds per unit keyword
UNIT_MULTIPLIERS = {
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
}

MM_SS_PATTERN = re.compile(r"^(\d{1,2}):([0-5]?\d)$")
UNIT_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(hours?|hrs?|hr|h|minutes?|mins?|min|m|seconds?|secs?|sec|s)\b"
)
BARE_NUMBER_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")
FILLER_PATTERN = re.compile(r"\band\b|,")


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def parse_duration_seconds(text: str) -> int:
    """Parse a human duration into whole seconds.

    Args:
        text: Duration such as "5 minutes", "1m 30s", "2:00" or "45"

    Returns:
        Total seconds (always > 0)

    Raises:
        DurationParseError: empty input, non-positive total, or leftover
            content that is not part of a recognised unit phrase
    """
    normalized = text.strip().lower()
    if not normalized:
        raise DurationParseError("Duration must not be empty.")

    match = MM_SS_PATTERN.match(normalized)
    if match:
        total = int(match.group(1)) * 60 + int(match.group(2))
        if total <= 0:
            raise DurationParseError("Duration must be greater than zero seconds.")
        return total

    unit_matches = list(UNIT_PATTERN.finditer(normalized))
    if unit_matches:
        total = 0
        for m in unit_matches:
            total += _round_half_up(float(m.group(1)) * UNIT_MULTIPLIERS[m.group(2)])

        leftover = FILLER_PATTERN.sub(" ", UNIT_PATTERN.sub(" ", normalized)).strip()
        if re.search(r"\d", leftover):
            raise DurationParseError(f'Could not parse duration "{text}".')
        if total <= 0:
            raise DurationParseError("Duration must be greater than zero seconds.")
        return total

    if BARE_NUMBER_PATTERN.match(normalized):
        seconds = _round_half_up(float(normalized))
        if seconds > 0:
            return seconds

    raise DurationParseError(f'Could not parse duration "{text}".')
