from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from parlay_gen.cache import CacheEntry, TTLCache
from parlay_gen.rate_limit import RateLimiter, RequestRateMonitor


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_cache_entry_valid_while_younger_than_ttl() -> None:
    entry = CacheEntry(value="x", stored_at=100.0)

    assert entry.is_fresh(now=399.0, ttl_seconds=300.0)
    assert not entry.is_fresh(now=400.0, ttl_seconds=300.0)


def test_ttl_cache_expires_on_read() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(ttl_seconds=60.0, clock=clock)
    cache.set("k", "v")

    assert cache.get("k") == "v"
    clock.now += 60.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_purge_expired_counts_removed_entries() -> None:
    clock = FakeClock()
    cache: TTLCache[int] = TTLCache(ttl_seconds=10.0, clock=clock)
    cache.set("a", 1)
    clock.now += 5.0
    cache.set("b", 2)
    clock.now += 6.0

    assert cache.purge_expired() == 1
    assert cache.get("b") == 2


def test_get_or_compute_reuses_fresh_value() -> None:
    cache: TTLCache[int] = TTLCache(ttl_seconds=60.0, clock=FakeClock())
    calls = {"count": 0}

    def compute() -> int:
        calls["count"] += 1
        return 7

    assert cache.get_or_compute("q", compute) == 7
    assert cache.get_or_compute("q", compute) == 7
    assert calls["count"] == 1


def test_get_or_compute_does_not_cache_failures() -> None:
    cache: TTLCache[int] = TTLCache(ttl_seconds=60.0, clock=FakeClock())

    def boom() -> int:
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError, match="provider down"):
        cache.get_or_compute("q", boom)
    assert cache.get_or_compute("q", lambda: 3) == 3


def test_concurrent_identical_keys_share_one_call() -> None:
    cache: TTLCache[str] = TTLCache(ttl_seconds=60.0)
    release = threading.Event()
    calls = {"count": 0}
    lock = threading.Lock()

    def slow() -> str:
        with lock:
            calls["count"] += 1
        release.wait(timeout=5)
        return "result"

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(cache.get_or_compute, "same", slow) for _ in range(4)]
        time.sleep(0.05)
        release.set()
        results = [future.result(timeout=5) for future in futures]

    assert results == ["result"] * 4
    assert calls["count"] == 1


def test_rate_limiter_sleeps_between_calls() -> None:
    sleeps: list[float] = []
    limiter = RateLimiter(rpm=60, sleep=sleeps.append)

    limiter.wait()
    limiter.wait()

    assert len(sleeps) == 1
    assert 0.0 < sleeps[0] <= 1.0


def test_request_rate_monitor_warns_above_threshold() -> None:
    clock = FakeClock()
    monitor = RequestRateMonitor(warn_threshold=2, name="search", clock=clock)

    assert monitor.record() == 1
    assert monitor.record() == 2
    assert monitor.record() == 3
    assert monitor.warnings == 1
    clock.now += 1.0
    assert monitor.record() == 1
