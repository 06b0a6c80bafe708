"""Window store interfaces.

The limiter depends on this abstraction (not a concrete implementation) so
the storage backend can be swapped (e.g., Redis for multi-instance
deployments) without touching admission logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowSnapshot:
    """Read-only view of a live counter.

    Attributes:
        count: Admission checks recorded in the current window.
        window_start: UNIX epoch seconds when the window opened.
        expires_at: UNIX epoch seconds when the window closes.
    """

    count: int
    window_start: float
    expires_at: float


class AbstractWindowStore(ABC):
    """Interface for fixed-window counter stores.

    Keys are ``(policy_name, identity)`` pairs. A counter is live while
    ``now < window_start + window_seconds``; expired counters are treated as
    absent even if they have not been physically removed yet.
    """

    backend_name: str = "abstract"

    @abstractmethod
    def increment_and_read(
        self,
        policy_name: str,
        identity: str,
        limit: int,
        window_seconds: float,
    ) -> tuple[int, float]:
        """Atomically count one admission check for a key.

        Creates a fresh counter (count 1, window starting now) when none is
        live, otherwise increments the live one. The count saturates at
        ``limit + 1`` so repeated denials do not grow it further.

        Args:
            policy_name: Policy the counter belongs to.
            identity: Caller identity key.
            limit: Policy limit (used for saturation only).
            window_seconds: Window length applied when a counter is created.

        Returns:
            Tuple of (count after increment, window start epoch seconds).

        Raises:
            StoreUnavailableError: If a remote backend cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def peek(self, policy_name: str, identity: str) -> WindowSnapshot | None:
        """Return the live counter for a key without mutating it."""
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """Drop every counter."""
        raise NotImplementedError

    def sweep(self, grace_factor: float = 1.0) -> int:
        """Physically remove counters expired for more than ``grace_factor`` windows.

        Backends whose keys expire on their own may keep this default.

        Returns:
            Number of counters removed.
        """
        return 0

    def ping(self) -> bool:
        """Return whether the backend answers, without raising."""
        return True
