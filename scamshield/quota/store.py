"""
Quota store contract and in-memory implementation.

A quota window row is keyed by (subject, endpoint, tier, window_start) and holds
a request count. get_and_increment() is the only mutating call and must be atomic:
it never lets the count pass max_requests.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from scamshield.shield_logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaKey:
    """Identity of a quota counter: who, which endpoint, which subscription tier."""

    subject: str
    endpoint: str
    tier: str


@dataclass
class QuotaWindow:
    key: QuotaKey
    window_start: int
    count: int
    updated_at: float


class QuotaStore(ABC):
    """Durable counters per (subject, endpoint, tier, window)."""

    @abstractmethod
    def get_and_increment(self, key: QuotaKey, window_start: int, max_requests: int) -> tuple[bool, int]:
        """
        Atomically admit one request in the given window.

        Returns (True, new_count) after incrementing when the current count is
        below max_requests, else (False, current_count) without touching the row.
        """
        ...

    @abstractmethod
    def get_usage(self, key: QuotaKey, window_range: tuple[int, int]) -> int:
        """Read-only: total count over windows starting in [start, end)."""
        ...

    @abstractmethod
    def purge_before(self, cutoff: int) -> int:
        """Delete windows that started before cutoff. Returns rows removed."""
        ...


class MemoryQuotaStore(QuotaStore):
    """Process-local quota store. Suitable for tests and single-process deployments."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._windows: dict[tuple[QuotaKey, int], QuotaWindow] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get_and_increment(self, key: QuotaKey, window_start: int, max_requests: int) -> tuple[bool, int]:
        with self._lock:
            window = self._windows.get((key, window_start))
            current = window.count if window else 0
            if current >= max_requests:
                return False, current
            if window is None:
                window = QuotaWindow(key=key, window_start=window_start, count=0, updated_at=0.0)
                self._windows[(key, window_start)] = window
            window.count += 1
            window.updated_at = self._clock()
            return True, window.count

    def get_usage(self, key: QuotaKey, window_range: tuple[int, int]) -> int:
        start, end = window_range
        with self._lock:
            return sum(
                w.count
                for (k, ws), w in self._windows.items()
                if k == key and start <= ws < end
            )

    def purge_before(self, cutoff: int) -> int:
        with self._lock:
            stale = [k for k in self._windows if k[1] < cutoff]
            for k in stale:
                del self._windows[k]
        if stale:
            logger.info("quota_windows_purged", removed=len(stale), cutoff=cutoff)
        return len(stale)
