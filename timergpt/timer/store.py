"""JSON file store for the timer snapshot.

The whole timer table is written on every change. Writes are queued: each
save waits for the previous one to settle (success or failure) before it
touches the file, so snapshots land in call order and never interleave.
"""
import asyncio
import json
from pathlib import Path
from typing import Protocol

from loguru import logger

from .types import Timer

logger = logger.bind(module="timer.store")


class TimerStorage(Protocol):
    """Protocol for durable timer snapshots."""

    async def load(self) -> list[Timer]:
        """Load every persisted timer ([] when nothing is stored yet)."""
        ...

    async def save(self, timers: list[Timer]) -> None:
        """Persist the full snapshot."""
        ...


def serialize_timers(timers: list[Timer]) -> str:
    return json.dumps([t.to_dict() for t in timers], indent=2, ensure_ascii=False)


class TimerFileStorage:
    """Timer snapshot stored as a JSON array in a single file."""

    def __init__(self, file_path: str | Path):
        """Initialize storage.

        Args:
            file_path: Location of the JSON snapshot. Parent directories are
                created on first save.
        """
        self.file_path = Path(file_path).expanduser()
        self._pending: asyncio.Task | None = None

    async def load(self) -> list[Timer]:
        """Load timers from disk.

        A missing file yields an empty list. Any other failure (permissions,
        malformed JSON) propagates to the caller.
        """
        try:
            raw = await asyncio.to_thread(self.file_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No timer snapshot at {self.file_path}, starting empty")
            return []

        data = json.loads(raw)
        if not isinstance(data, list):
            logger.warning(f"Ignoring non-list timer snapshot in {self.file_path}")
            return []

        timers = [Timer.from_dict(item) for item in data]
        logger.info(f"Loaded {len(timers)} timers from {self.file_path}")
        return timers

    async def save(self, timers: list[Timer]) -> None:
        """Queue a write of the full snapshot and wait for it to finish."""
        serialized = serialize_timers(timers)
        previous = self._pending
        self._pending = asyncio.ensure_future(self._write_after(previous, serialized))
        await self._pending

    async def wait_for_pending(self) -> None:
        """Wait for the most recently queued write (raises its error, if any)."""
        if self._pending is not None:
            await self._pending

    async def _write_after(self, previous: asyncio.Task | None, serialized: str) -> None:
        if previous is not None and not previous.done():
            # Settle only; the previous caller owns its outcome
            await asyncio.wait([previous])
        await asyncio.to_thread(self._write, serialized)

    def _write(self, serialized: str) -> None:
        """Write the snapshot atomically (temp file + replace)."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(serialized)
        temp_path.replace(self.file_path)
        logger.debug(f"Wrote timer snapshot to {self.file_path}")
