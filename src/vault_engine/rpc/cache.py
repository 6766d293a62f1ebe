"""TTL cache owned by the services that use it."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any


class CacheEntry:
    """Cached value with its expiry time."""

    def __init__(self, value: Any, ttl: float, created_at: float) -> None:
        self.value = value
        self.ttl = ttl
        self.created_at = created_at

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl


class TTLCache:
    """In-memory cache with per-entry TTL.

    The clock is injectable so expiry can be driven from tests.
    """

    def __init__(self, default_ttl: float = 30, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or ``None`` when missing or expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._cache[key] = CacheEntry(
                value, self.default_ttl if ttl is None else ttl, self._clock()
            )

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or every entry when no key is given."""
        with self._lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    def clear(self) -> None:
        self.invalidate()

    def cleanup_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._cache)
