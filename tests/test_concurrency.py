"""Concurrent checks for one key never admit more than the limit."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from quota_gate.adapters.window_store.in_memory import InMemoryWindowStore
from quota_gate.services.identity import ClientAddress
from quota_gate.services.policies import PolicyRegistry
from quota_gate.services.rate_limiter import RateLimiter


@pytest.mark.parametrize(("limit", "extra"), [(5, 0), (5, 45), (100, 100), (1, 63)])
def test_concurrent_checks_admit_exactly_limit(limit: int, extra: int) -> None:
    registry = PolicyRegistry.from_overrides({"default": {"limit": limit}})
    limiter = RateLimiter(InMemoryWindowStore(shard_count=4), registry=registry)
    client = ClientAddress(forwarded_for="203.0.113.7")
    total = limit + extra
    workers = 16
    barrier = threading.Barrier(workers)

    def worker(calls: int) -> list[bool]:
        barrier.wait()
        return [limiter.check("default", client).allowed for _ in range(calls)]

    per_worker, leftover = divmod(total, workers)
    calls = [per_worker + (1 if i < leftover else 0) for i in range(workers)]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = [allowed for batch in pool.map(worker, calls) for allowed in batch]

    assert len(results) == total
    assert sum(results) == limit


def test_concurrent_checks_on_distinct_keys_do_not_interfere() -> None:
    registry = PolicyRegistry.from_overrides({"default": {"limit": 3}})
    limiter = RateLimiter(InMemoryWindowStore(shard_count=2), registry=registry)
    identities = [f"198.51.100.{i}" for i in range(20)]
    barrier = threading.Barrier(len(identities))

    def worker(identity: str) -> int:
        barrier.wait()
        client = ClientAddress(peer=identity)
        return sum(limiter.check("default", client).allowed for _ in range(10))

    with ThreadPoolExecutor(max_workers=len(identities)) as pool:
        admitted = list(pool.map(worker, identities))

    assert admitted == [3] * len(identities)
