"""Process-lifetime TTL cache passed explicitly to the components that share it."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return (now - self.stored_at) < ttl_seconds


class TTLCache(Generic[T]):
    """Key to (value, stored-at) map with expiry checked on read.

    ``get_or_compute`` shares one in-flight computation between concurrent callers
    asking for the same key. Failed computations are not cached.
    """

    def __init__(self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._pending: dict[Hashable, Future[T]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock(), self.ttl_seconds):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                key
                for key, entry in self._entries.items()
                if not entry.is_fresh(now, self.ttl_seconds)
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_fresh(self._clock(), self.ttl_seconds):
                return entry.value
            pending = self._pending.get(key)
            owner = pending is None
            if pending is None:
                pending = Future()
                self._pending[key] = pending
        if not owner:
            return pending.result()

        try:
            value = compute()
        except Exception as exc:
            with self._lock:
                self._pending.pop(key, None)
            pending.set_exception(exc)
            raise
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
            self._pending.pop(key, None)
        pending.set_result(value)
        return value
