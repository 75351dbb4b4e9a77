"""
Pytest fixtures for ScamShield tests: frozen clock, in-memory cache, temporary
SQLite quota store, scriptable fake analyzers.
"""

from __future__ import annotations

import asyncio

import pytest

from scamshield.analyzers.base import Analyzer
from scamshield.core.models import AnalysisRequest, AnalyzerResult


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAnalyzer(Analyzer):
    """
    Analyzer returning a fixed score after an optional delay, or raising.

    calls counts analyze() invocations; applies_to honors needs_asset.
    """

    def __init__(
        self,
        name: str,
        score: float = 50.0,
        *,
        confidence: float = 0.8,
        delay: float = 0.0,
        error: Exception | None = None,
        needs_asset: bool = False,
        timeout: float = 5.0,
        fallback_score: float | None = None,
        details: dict | None = None,
    ) -> None:
        self.name = name
        self.score = score
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.needs_asset = needs_asset
        self.timeout = timeout
        self.fallback_score = fallback_score
        self.details = details or {}
        self.calls = 0
        self.cancelled = False

    def applies_to(self, request: AnalysisRequest) -> bool:
        return bool(request.asset_symbol) if self.needs_asset else True

    async def analyze(self, request: AnalysisRequest) -> AnalyzerResult:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return AnalyzerResult(
            source=self.name,
            risk_score=self.score,
            confidence=self.confidence,
            details=dict(self.details),
        )

    def degraded_result(self, request: AnalysisRequest, reason: str) -> AnalyzerResult:
        if self.fallback_score is None:
            return super().degraded_result(request, reason)
        return AnalyzerResult(source=self.name, risk_score=self.fallback_score, confidence=0.2, error=reason)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    from scamshield.cache import MemoryCache

    return MemoryCache(max_entries=100, stale_ttl=3600, clock=clock)


@pytest.fixture
def sql_store(tmp_path, clock):
    """SqlQuotaStore on a temporary SQLite file, tables created."""
    from scamshield.quota import SqlQuotaStore

    store = SqlQuotaStore(f"sqlite:///{tmp_path / 'quota.db'}", clock=clock)
    store.init_db()
    yield store
    store.dispose()


@pytest.fixture
def memory_store(clock):
    from scamshield.quota import MemoryQuotaStore

    return MemoryQuotaStore(clock=clock)


@pytest.fixture
def make_request():
    def _make(request_id: str = "req-1", **kwargs) -> AnalysisRequest:
        kwargs.setdefault("subject_identifiers", ("alice", "bob"))
        return AnalysisRequest(request_id=request_id, **kwargs)

    return _make


@pytest.fixture
def fake_analyzer():
    return FakeAnalyzer
