"""Bounded, time-expiring key/value cache shared by compliance components."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """Cached value with its insertion time and lifetime (None = no expiry)."""

    value: V
    inserted_at: float
    ttl: float | None

    def is_expired(self, now: float) -> bool:
        """An entry is visible only while now < inserted_at + ttl."""
        if self.ttl is None:
            return False
        return now >= self.inserted_at + self.ttl


class PolicyCache(Generic[V]):
    """
    LRU + TTL mapping safe for concurrent readers and writers.

    Expiry is checked lazily on read; eviction only happens on write
    pressure. Iteration order of the internal dict is recency order
    (least recently used first).
    """

    def __init__(
        self,
        capacity: int,
        clock_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize an empty cache holding at most ``capacity`` entries."""
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._clock = clock_fn or time.monotonic
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()

    def get(self, key: str) -> V | None:
        """Return a live value and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                return None
            self._entries.move_to_end(key)
            return entry.value

    def put(self, key: str, value: V, ttl: float | None) -> None:
        """Insert or replace ``key``, evicting one entry if at capacity."""
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be > 0 or None")
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.capacity:
                self._evict_one(now)
            self._entries[key] = CacheEntry(value=value, inserted_at=now, ttl=ttl)

    def pop(self, key: str) -> V | None:
        """Remove ``key`` and return its live value, if any."""
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.value

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        """Number of stored entries, expired ones included until evicted."""
        with self._lock:
            return len(self._entries)

    def _evict_one(self, now: float) -> None:
        """Evict the LRU live entry, else the oldest-inserted expired one."""
        expired: list[tuple[float, str]] = []
        for key, entry in self._entries.items():
            if not entry.is_expired(now):
                del self._entries[key]
                return
            expired.append((entry.inserted_at, key))
        _, victim = min(expired)
        del self._entries[victim]
