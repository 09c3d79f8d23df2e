"""Shared fixtures for timer tests."""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

T0 = datetime(2024, 1, 15, 14, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> datetime:
        self.now = self.now + timedelta(milliseconds=ms)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
