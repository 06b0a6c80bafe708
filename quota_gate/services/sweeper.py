"""Background reaping of stale counters and expired bans.

Lazy replacement on access already keeps live state correct; the sweeper only
bounds memory when many distinct identities show up once and never return.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from quota_gate.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class WindowSweeper:
    """Daemon thread sweeping the window store and ban table periodically.

    The limiter is looked up through ``limiter_provider`` on every tick, so a
    limiter rebuilt after a configuration change is the one that gets swept.
    """

    def __init__(
        self,
        limiter_provider: Callable[[], RateLimiter],
        *,
        interval_seconds: float = 900.0,
        grace_factor: float = 1.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._limiter_provider = limiter_provider
        self._interval = interval_seconds
        self._grace_factor = grace_factor
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="quota-gate-sweeper", daemon=True)
        self._thread.start()
        logger.info("rate_limit.sweeper_started", extra={"interval_s": self._interval})

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> int:
        """Sweep once; returns the number of counters and ban records removed."""

        limiter = self._limiter_provider()
        removed = limiter.store.sweep(self._grace_factor)
        removed += limiter.bans.purge_expired()
        logger.info(
            "rate_limit.sweep",
            extra={"removed": removed, "backend": limiter.store.backend_name},
        )
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                # Retried on the next tick.
                logger.exception("rate_limit.sweep_failed")
