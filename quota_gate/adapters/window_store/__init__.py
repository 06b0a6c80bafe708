"""Window store adapters.

This package keeps the counter table behind a small abstraction so the engine
can start with a per-process in-memory store and move to Redis (or another
shared store) without changing the limiter or the HTTP layer.
"""

from quota_gate.adapters.window_store.base import AbstractWindowStore, WindowSnapshot
from quota_gate.adapters.window_store.in_memory import InMemoryWindowStore
from quota_gate.adapters.window_store.redis_store import RedisWindowStore

__all__ = [
    "AbstractWindowStore",
    "InMemoryWindowStore",
    "RedisWindowStore",
    "WindowSnapshot",
]
