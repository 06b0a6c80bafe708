"""Replaceable time sources.

Every component that does window arithmetic receives a clock callable
returning UNIX time in seconds instead of calling ``time.time()`` itself, so
window boundaries can be driven deterministically in tests.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

Clock = Callable[[], float]


class SystemClock:
    """Wall-clock time source."""

    def __call__(self) -> float:
        return time.time()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return "SystemClock()"


class ManualClock:
    """Clock that only moves when told to.

    Safe to share between threads; reads and adjustments are serialized.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"ManualClock(now={self._now})"

    def advance(self, seconds: float) -> float:
        """Move the clock forward and return the new time.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, timestamp: float) -> None:
        with self._lock:
            self._now = float(timestamp)


system_clock = SystemClock()
