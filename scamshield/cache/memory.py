"""
In-process TTL cache with stale-read support.

Entries are replaced wholesale on set(). After expiry an entry is still
retained for stale_ttl seconds so get_stale() can serve it when an upstream
lookup fails. When max_entries is reached the least recently accessed 10% are
evicted. Thread-safe; constructed explicitly and injected, never a module global.
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SEC = 3600.0
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_STALE_TTL_SEC = 6 * 3600.0
EVICT_FRACTION = 0.1


class Cache(ABC):
    """Key/value store contract consumed by analyzers and the aggregator."""

    @abstractmethod
    def get(self, key: str) -> tuple[Any, bool]:
        """Return (value, True) for a live entry, else (None, False)."""
        ...

    @abstractmethod
    def get_stale(self, key: str) -> tuple[Any, bool]:
        """Return (value, True) for a live or expired-but-retained entry."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    stale_until: float
    last_accessed: float


class MemoryCache(Cache):
    """Bounded TTL cache held in process memory."""

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SEC,
        stale_ttl: float = DEFAULT_STALE_TTL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max(1, int(max_entries))
        self.default_ttl = float(default_ttl)
        self.stale_ttl = max(0.0, float(stale_ttl))
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> tuple[Any, bool]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if now >= entry.expires_at:
                if now >= entry.stale_until:
                    del self._entries[key]
                return None, False
            entry.last_accessed = now
            return entry.value, True

    def get_stale(self, key: str) -> tuple[Any, bool]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if now >= entry.stale_until:
                del self._entries[key]
                return None, False
            entry.last_accessed = now
            return entry.value, True

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        ttl = self.default_ttl if ttl is None else max(0.0, float(ttl))
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_locked(now)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=now + ttl,
                stale_until=now + ttl + self.stale_ttl,
                last_accessed=now,
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_locked(self, now: float) -> None:
        """Drop dead entries first; if still full, drop the least recently accessed 10%."""
        dead = [k for k, e in self._entries.items() if now >= e.stale_until]
        for k in dead:
            del self._entries[k]
        if len(self._entries) < self.max_entries:
            return
        by_access = sorted(self._entries.values(), key=lambda e: e.last_accessed)
        n = max(1, math.ceil(len(by_access) * EVICT_FRACTION))
        for entry in by_access[:n]:
            del self._entries[entry.key]
        logger.debug("cache_evicted", evicted=n + len(dead), remaining=len(self._entries))
