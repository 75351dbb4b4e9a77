"""
Analyzer interface and the cache-first template every built-in analyzer follows.

Contract: `await analyzer.analyze(request) -> AnalyzerResult`. The caller bounds
the call with a deadline and may cancel it. A built-in analyzer:

1. Returns a live cache entry without I/O when one exists.
2. Otherwise runs its external lookup under its own timeout and writes a
   successful result through to the cache with its TTL.
3. On lookup failure returns a degraded result (error set, reduced
   confidence): the last known value if the cache still retains it, else the
   deterministic heuristic fallback. It raises only when neither exists.

Degraded results are never cached, so the next request retries the lookup.
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any

from scamshield.cache import Cache
from scamshield.core.exceptions import AnalyzerDegraded, AnalyzerUnavailable
from scamshield.core.models import AnalysisRequest, AnalyzerResult
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0
DEFAULT_CACHE_TTL_SEC = 3600.0
# Confidence multiplier for a result served from an expired cache entry
STALE_CONFIDENCE_FACTOR = 0.7

TAG_CACHED = "cached"
TAG_STALE = "stale"
TAG_FALLBACK = "fallback"


class Analyzer(ABC):
    """One pluggable risk signal source. Adding a source means implementing this and registering it."""

    name: str = "analyzer"
    timeout: float = DEFAULT_TIMEOUT_SEC

    def applies_to(self, request: AnalysisRequest) -> bool:
        """Whether this analyzer has anything to look at in the request."""
        return True

    @abstractmethod
    async def analyze(self, request: AnalysisRequest) -> AnalyzerResult:
        ...

    def degraded_result(self, request: AnalysisRequest, reason: str) -> AnalyzerResult:
        """Best-effort result without I/O, used when the aggregator cuts the call short."""
        raise AnalyzerUnavailable(f"{self.name} has no fallback", analyzer=self.name)


class CachingAnalyzer(Analyzer):
    """
    Template for analyzers with an external lookup and a heuristic fallback.

    Subclasses set `cache_fields` (which request fields the result depends on)
    and implement `lookup()` and `fallback()`.
    """

    cache_fields: tuple[str, ...] = ("identifiers", "content", "asset")

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> None:
        self.cache = cache
        self.timeout = float(timeout) if timeout is not None else type(self).timeout
        self.cache_ttl = float(cache_ttl) if cache_ttl is not None else DEFAULT_CACHE_TTL_SEC

    def applies_to(self, request: AnalysisRequest) -> bool:
        return bool(request.subject_identifiers or request.content)

    def cache_key(self, request: AnalysisRequest) -> str:
        return f"{self.name}:{request.digest(*self.cache_fields)}"

    @abstractmethod
    async def lookup(self, request: AnalysisRequest) -> AnalyzerResult:
        """External lookup. May raise; failures are turned into a degraded result."""
        ...

    @abstractmethod
    def fallback(self, request: AnalysisRequest) -> AnalyzerResult | None:
        """Deterministic heuristic scorer. None means this analyzer has no fallback."""
        ...

    async def analyze(self, request: AnalysisRequest) -> AnalyzerResult:
        start = time.monotonic()
        key = self.cache_key(request)

        cached = self._cache_get(key, stale=False)
        if cached is not None:
            cached.tags.add(TAG_CACHED)
            cached.latency_ms = (time.monotonic() - start) * 1000
            logger.debug("analyzer_cache_hit", analyzer=self.name, request_id=request.request_id)
            return cached

        try:
            result = await asyncio.wait_for(self.lookup(request), timeout=self.timeout)
        except Exception as e:
            reason = _describe(e)
            result = self._degrade(request, key, reason)
            result.latency_ms = (time.monotonic() - start) * 1000
            return result

        result.source = self.name
        result.latency_ms = (time.monotonic() - start) * 1000
        if result.error is None:
            self._cache_set(key, result)
        logger.info(
            "analyzer_done",
            analyzer=self.name,
            request_id=request.request_id,
            risk_score=round(result.risk_score, 1),
            confidence=round(result.confidence, 3),
            degraded=result.degraded,
            latency_ms=round(result.latency_ms, 1),
        )
        return result

    def degraded_result(self, request: AnalysisRequest, reason: str) -> AnalyzerResult:
        return self._degrade(request, self.cache_key(request), reason)

    def _degrade(self, request: AnalysisRequest, key: str, reason: str) -> AnalyzerResult:
        degraded = AnalyzerDegraded(self.name, reason)
        stale = self._cache_get(key, stale=True)
        if stale is not None:
            stale.error = f"stale data: {reason}"
            stale.confidence *= STALE_CONFIDENCE_FACTOR
            stale.tags.add(TAG_STALE)
            logger.warning(
                "analyzer_degraded",
                analyzer=self.name,
                request_id=request.request_id,
                mode="stale",
                error=degraded.message,
            )
            return stale

        result = self.fallback(request)
        if result is None:
            logger.error("analyzer_failed", analyzer=self.name, request_id=request.request_id, error=reason)
            raise AnalyzerUnavailable(degraded.message, analyzer=self.name)
        result.source = self.name
        result.error = reason
        result.tags.add(TAG_FALLBACK)
        logger.warning(
            "analyzer_degraded",
            analyzer=self.name,
            request_id=request.request_id,
            mode="fallback",
            error=degraded.message,
        )
        return result

    def _cache_get(self, key: str, *, stale: bool) -> AnalyzerResult | None:
        if self.cache is None:
            return None
        try:
            raw, found = self.cache.get_stale(key) if stale else self.cache.get(key)
            if not found:
                return None
            return AnalyzerResult.from_dict(json.loads(raw))
        except Exception as e:
            logger.warning("analyzer_cache_read_failed", analyzer=self.name, error=str(e))
            return None

    def _cache_set(self, key: str, result: AnalyzerResult) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, json.dumps(result.to_dict()), self.cache_ttl)
        except Exception as e:
            logger.warning("analyzer_cache_write_failed", analyzer=self.name, error=str(e))


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "lookup timed out"
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


def clamp_score(value: Any) -> float:
    try:
        return max(0.0, min(100.0, float(value)))
    except (TypeError, ValueError):
        return 0.0
