"""Redis-backed fixed-window counter store.

Use this backend when several API instances must share one quota table. The
increment runs as a single Lua script, so Redis serializes concurrent checks
for the same key across every instance.

Times are passed in from the caller's clock rather than read from the Redis
server, which keeps window arithmetic identical to the in-memory store.
"""

from __future__ import annotations

import logging
import math

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from quota_gate.adapters.window_store.base import AbstractWindowStore, WindowSnapshot
from quota_gate.core.clock import Clock, system_clock
from quota_gate.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# KEYS[1] = counter key
# ARGV: now, window_seconds, limit, ttl_ms
_INCREMENT_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local limit = tonumber(ARGV[3])

local data = redis.call('HMGET', key, 'start', 'window', 'count')
local raw_start = data[1]
local start = tonumber(data[1])
local stored_window = tonumber(data[2])
local count = tonumber(data[3])

if start == nil or stored_window == nil or now >= start + stored_window then
  raw_start = ARGV[1]
  count = 1
  redis.call('HSET', key, 'start', ARGV[1], 'window', ARGV[2], 'count', 1)
  redis.call('PEXPIRE', key, ARGV[4])
elseif count <= limit then
  count = redis.call('HINCRBY', key, 'count', 1)
end

return {count, raw_start}
"""

_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError)


class RedisWindowStore(AbstractWindowStore):
    """Window store backed by a shared Redis instance.

    Each counter is a hash ``{start, window, count}`` whose TTL equals the
    window, so Redis reaps stale counters without a sweep.
    """

    backend_name = "redis"

    def __init__(
        self,
        client: redis.Redis,
        *,
        key_prefix: str = "quota_gate:",
        clock: Clock = system_clock,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock
        self._increment = client.register_script(_INCREMENT_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        timeout_seconds: float = 0.5,
        key_prefix: str = "quota_gate:",
        clock: Clock = system_clock,
    ) -> "RedisWindowStore":
        """Build a store from a Redis URL with bounded socket timeouts.

        Args:
            url: Redis connection URL.
            timeout_seconds: Connect/read timeout so a dead store never hangs callers.
            key_prefix: Namespace prefix for counter keys.
            clock: Time source function returning UNIX time in seconds.
        """

        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True,
        )
        return cls(client, key_prefix=key_prefix, clock=clock)

    def _key(self, policy_name: str, identity: str) -> str:
        return f"{self._key_prefix}{policy_name}:{identity}"

    def increment_and_read(
        self,
        policy_name: str,
        identity: str,
        limit: int,
        window_seconds: float,
    ) -> tuple[int, float]:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if limit < 0:
            raise ValueError("limit must be >= 0")

        now = self._clock()
        ttl_ms = max(1, int(math.ceil(window_seconds * 1000)))
        try:
            count, window_start = self._increment(
                keys=[self._key(policy_name, identity)],
                args=[repr(now), repr(float(window_seconds)), limit, ttl_ms],
            )
        except _UNAVAILABLE_ERRORS as exc:
            raise self._unavailable("increment", policy_name, exc) from exc

        return int(count), float(window_start)

    def peek(self, policy_name: str, identity: str) -> WindowSnapshot | None:
        try:
            start, window, count = self._client.hmget(
                self._key(policy_name, identity), ["start", "window", "count"]
            )
        except _UNAVAILABLE_ERRORS as exc:
            raise self._unavailable("peek", policy_name, exc) from exc

        if start is None or window is None or count is None:
            return None

        window_start = float(start)
        expires_at = window_start + float(window)
        if self._clock() >= expires_at:
            return None
        return WindowSnapshot(count=int(count), window_start=window_start, expires_at=expires_at)

    def reset(self) -> None:
        """Delete every counter under this store's key prefix."""

        try:
            keys = list(self._client.scan_iter(match=f"{self._key_prefix}*"))
            if keys:
                self._client.delete(*keys)
        except _UNAVAILABLE_ERRORS as exc:
            raise self._unavailable("reset", None, exc) from exc

    def ping(self) -> bool:
        """Return whether the backend answers, without raising."""

        try:
            return bool(self._client.ping())
        except _UNAVAILABLE_ERRORS:
            return False

    def _unavailable(
        self,
        operation: str,
        policy_name: str | None,
        exc: Exception,
    ) -> StoreUnavailableError:
        logger.warning(
            "window_store.unavailable",
            extra={
                "backend": self.backend_name,
                "operation": operation,
                "policy": policy_name,
                "error_type": type(exc).__name__,
            },
        )
        return StoreUnavailableError(
            code="store_unavailable",
            message="Rate limit store is unavailable",
            details={"backend": self.backend_name, "hint": f"{operation} failed"},
        )
