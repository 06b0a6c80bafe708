"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and pins the settings the suite
relies on before any application module is imported.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from quota_gate.adapters.window_store.in_memory import InMemoryWindowStore  # noqa: E402
from quota_gate.core.clock import ManualClock  # noqa: E402
from quota_gate.core.rate_limit import reset_rate_limiter, set_rate_limiter  # noqa: E402
from quota_gate.services.identity import ClientAddress, clear_client_address  # noqa: E402
from quota_gate.services.rate_limiter import RateLimiter  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_limiter():
    """Every test starts with a fresh process-wide limiter and no request context."""
    reset_rate_limiter()
    clear_client_address()
    yield
    reset_rate_limiter()
    clear_client_address()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def store(clock: ManualClock) -> InMemoryWindowStore:
    return InMemoryWindowStore(shard_count=8, clock=clock)


@pytest.fixture
def limiter(store: InMemoryWindowStore, clock: ManualClock) -> RateLimiter:
    """Limiter over the built-in policy table, installed as the process-wide one."""
    instance = RateLimiter(store, clock=clock)
    set_rate_limiter(instance)
    return instance


@pytest.fixture
def client_address() -> ClientAddress:
    return ClientAddress(forwarded_for="127.0.0.1", peer="10.0.0.5")
