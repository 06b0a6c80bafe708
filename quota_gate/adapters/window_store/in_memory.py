"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the table is split into shards, each guarded by its own lock,
  so unrelated keys rarely contend while a single key is always serialized.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from quota_gate.adapters.window_store.base import AbstractWindowStore, WindowSnapshot
from quota_gate.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)

CounterKey = tuple[str, str]


@dataclass
class _WindowCounter:
    window_start: float
    window_seconds: float
    count: int

    @property
    def expires_at(self) -> float:
        return self.window_start + self.window_seconds

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class _Shard:
    __slots__ = ("lock", "counters")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.counters: dict[CounterKey, _WindowCounter] = {}


class InMemoryWindowStore(AbstractWindowStore):
    """Window store keeping counters in process memory.

    A counter window opens at the first check observed for a key and closes
    ``window_seconds`` later. The first check after it closes replaces the
    counter with a fresh one instead of accumulating onto it.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the Redis store for shared accuracy.
    """

    backend_name = "memory"

    def __init__(self, *, shard_count: int = 64, clock: Clock = system_clock) -> None:
        """Initialize the in-memory store.

        Args:
            shard_count: Number of independently locked shards.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If shard_count is invalid.
        """
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")

        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(shard_count))
        self._stats_lock = threading.Lock()
        self._created = 0
        self._rolled_over = 0
        self._swept = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryWindowStore(shards={len(self._shards)}, entries={self._entry_count()})"

    def _entry_count(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.counters)
        return total

    def _shard_for(self, key: CounterKey) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def increment_and_read(
        self,
        policy_name: str,
        identity: str,
        limit: int,
        window_seconds: float,
    ) -> tuple[int, float]:
        """Count one check for ``(policy_name, identity)``.

        Raises:
            ValueError: If window_seconds or limit are invalid.
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if limit < 0:
            raise ValueError("limit must be >= 0")

        key = (policy_name, identity)
        shard = self._shard_for(key)

        with shard.lock:
            now = self._clock()
            counter = shard.counters.get(key)

            if counter is None or not counter.is_live(now):
                rolled_over = counter is not None
                counter = _WindowCounter(window_start=now, window_seconds=window_seconds, count=1)
                shard.counters[key] = counter
                self._record_creation(rolled_over)
            elif counter.count <= limit:
                counter.count += 1

            return counter.count, counter.window_start

    def peek(self, policy_name: str, identity: str) -> WindowSnapshot | None:
        key = (policy_name, identity)
        shard = self._shard_for(key)

        with shard.lock:
            counter = shard.counters.get(key)
            if counter is None or not counter.is_live(self._clock()):
                return None
            return WindowSnapshot(
                count=counter.count,
                window_start=counter.window_start,
                expires_at=counter.expires_at,
            )

    def reset(self) -> None:
        """Remove all counters and reset stats."""

        for shard in self._shards:
            with shard.lock:
                shard.counters.clear()
        with self._stats_lock:
            self._created = 0
            self._rolled_over = 0
            self._swept = 0

    def sweep(self, grace_factor: float = 1.0) -> int:
        if grace_factor < 0:
            raise ValueError("grace_factor must be >= 0")

        removed = 0
        for shard in self._shards:
            with shard.lock:
                now = self._clock()
                stale = [
                    key
                    for key, counter in shard.counters.items()
                    if now >= counter.expires_at + grace_factor * counter.window_seconds
                ]
                for key in stale:
                    del shard.counters[key]
                removed += len(stale)

        with self._stats_lock:
            self._swept += removed

        if removed:
            logger.debug(
                "window_store.swept",
                extra={"removed": removed, "grace_factor": grace_factor},
            )
        return removed

    def stats(self) -> dict[str, int]:
        """Return lightweight store metrics without exposing keys."""

        entries = self._entry_count()
        with self._stats_lock:
            return {
                "shards": len(self._shards),
                "entries": entries,
                "created": self._created,
                "rolled_over": self._rolled_over,
                "swept": self._swept,
            }

    def _record_creation(self, rolled_over: bool) -> None:
        with self._stats_lock:
            self._created += 1
            if rolled_over:
                self._rolled_over += 1
