"""Ledger time sources."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of ledger time (unix seconds)."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time, truncated to whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock that only moves when told to (for tests and replays)."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        self._now += int(seconds)
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)
