"""
Aggregator: fan one request out to every applicable analyzer and merge the vectors.

Lifecycle of one run: CREATED -> DISPATCHING -> COLLECTING -> MERGING -> DONE | FAILED.

- Dispatch: one asyncio task per analyzer, each bounded by its own timeout
  plus a fallback grace period. An analyzer that exceeds that deadline or
  raises contributes nothing.
- Collect: wait for all tasks up to the global request timeout. Tasks still
  running then are cancelled and replaced by their degraded (stale or
  heuristic) result when the analyzer can produce one.
- Merge: overall score is the rounded mean of vector scores, vectors kept in
  dispatch order. Zero vectors raises AggregationFailed.
- Idempotency: the merged result is cached under aggregate:{request_id}
  together with a fingerprint of the payload and the caller, and replayed
  as-is for repeats without dispatching. Reusing a request_id with another
  payload or caller raises IdempotencyConflict.

Cancelling analyze() cancels every in-flight analyzer task.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from scamshield.analyzers.base import Analyzer
from scamshield.cache import Cache
from scamshield.core.exceptions import AggregationFailed, IdempotencyConflict
from scamshield.core.models import (
    DEFAULT_THRESHOLDS,
    AggregateResult,
    AnalysisRequest,
    AnalyzerResult,
    RiskThresholds,
)
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

AGGREGATE_KEY_PREFIX = "aggregate:"
DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
DEFAULT_FALLBACK_GRACE_SEC = 2.0
DEFAULT_AGGREGATE_TTL_SEC = 24 * 3600.0
DEFAULT_CONSENSUS_FLOOR = 70


class AggregationState(str, Enum):
    CREATED = "created"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


class Aggregator:
    def __init__(
        self,
        analyzers: list[Analyzer],
        cache: Cache | None = None,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        fallback_grace: float = DEFAULT_FALLBACK_GRACE_SEC,
        aggregate_ttl: float = DEFAULT_AGGREGATE_TTL_SEC,
        thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
        consensus_floor: int = DEFAULT_CONSENSUS_FLOOR,
        clock: Callable[[], float] = time.time,
        on_state: Callable[[str, AggregationState], None] | None = None,
    ) -> None:
        self.analyzers = list(analyzers)
        self.cache = cache
        self.request_timeout = request_timeout
        self.fallback_grace = fallback_grace
        self.aggregate_ttl = aggregate_ttl
        self.thresholds = thresholds
        self.consensus_floor = consensus_floor
        self._clock = clock
        self._on_state = on_state

    def cache_key(self, request: AnalysisRequest) -> str:
        return AGGREGATE_KEY_PREFIX + request.request_id

    @staticmethod
    def fingerprint(request: AnalysisRequest, owner: str | None = None) -> str:
        """Payload digest plus the caller that owns the idempotency key."""
        return f"{owner or '-'}:{request.digest('identifiers', 'content', 'asset')}"

    def cached(self, request: AnalysisRequest, owner: str | None = None) -> AggregateResult | None:
        """
        Previously merged result for this request_id, if still cached.

        Raises IdempotencyConflict when the cached entry belongs to a different
        payload or caller.
        """
        if self.cache is None:
            return None
        try:
            raw, found = self.cache.get(self.cache_key(request))
            if not found:
                return None
            entry = json.loads(raw)
            stored_fp = entry["fingerprint"]
            result = AggregateResult.from_dict(entry["result"], thresholds=self.thresholds)
        except Exception as e:
            logger.warning("aggregate_cache_read_failed", request_id=request.request_id, error=str(e))
            return None
        if stored_fp != self.fingerprint(request, owner):
            logger.warning("idempotency_key_conflict", request_id=request.request_id)
            raise IdempotencyConflict(
                "idempotency key was already used for a different request",
                field="idempotencyKey",
            )
        return result

    async def analyze(self, request: AnalysisRequest, *, owner: str | None = None) -> AggregateResult:
        """Run (or replay) one request. owner is the quota subject the idempotency key is scoped to."""
        self._transition(request, AggregationState.CREATED)
        try:
            replay = self.cached(request, owner)
        except IdempotencyConflict:
            self._transition(request, AggregationState.FAILED)
            raise
        if replay is not None:
            logger.info("aggregate_replayed", request_id=request.request_id, analysis_id=replay.analysis_id)
            self._transition(request, AggregationState.DONE)
            return replay

        start = time.monotonic()
        applicable = [a for a in self.analyzers if a.applies_to(request)]
        self._transition(request, AggregationState.DISPATCHING)
        tasks = [
            asyncio.create_task(self._run_analyzer(a, request), name=f"{a.name}:{request.request_id}")
            for a in applicable
        ]

        self._transition(request, AggregationState.COLLECTING)
        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=self.request_timeout)
            else:
                pending = set()
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            leftover = [t for t in tasks if not t.done()]
            for task in leftover:
                task.cancel()
            if leftover:
                await asyncio.gather(*leftover, return_exceptions=True)

        self._transition(request, AggregationState.MERGING)
        vectors: list[AnalyzerResult] = []
        caveats: list[str] = []
        for analyzer, task in zip(applicable, tasks):
            if task in pending:
                vector = self._deadline_fallback(analyzer, request)
                if vector is None:
                    caveats.append(f"{analyzer.name}: no result before request deadline")
                else:
                    vectors.append(vector)
                continue
            error = task.exception()
            if error is not None:
                reason = _describe(error)
                logger.warning(
                    "analyzer_dropped",
                    analyzer=analyzer.name,
                    request_id=request.request_id,
                    error=reason,
                )
                caveats.append(f"{analyzer.name}: unavailable ({reason})")
                continue
            vectors.append(task.result())

        if not vectors:
            self._transition(request, AggregationState.FAILED)
            logger.error(
                "aggregation_failed",
                request_id=request.request_id,
                analyzers=[a.name for a in applicable],
            )
            raise AggregationFailed(
                "No analyzer produced a result; try again later",
                request_id=request.request_id,
                analyzers=[a.name for a in applicable],
            )

        result = self._merge(request, vectors, caveats)
        result = self._store(request, result, owner)
        self._transition(request, AggregationState.DONE)
        logger.info(
            "aggregate_done",
            request_id=request.request_id,
            analysis_id=result.analysis_id,
            overall_risk_score=result.overall_risk_score,
            risk_level=result.risk_level.value,
            sources=result.sources,
            degraded=result.degraded,
            elapsed_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return result

    async def _run_analyzer(self, analyzer: Analyzer, request: AnalysisRequest) -> AnalyzerResult:
        return await asyncio.wait_for(analyzer.analyze(request), timeout=analyzer.timeout + self.fallback_grace)

    def _deadline_fallback(self, analyzer: Analyzer, request: AnalysisRequest) -> AnalyzerResult | None:
        try:
            vector = analyzer.degraded_result(request, "request deadline exceeded")
        except Exception as e:
            logger.warning("analyzer_cut_off", analyzer=analyzer.name, request_id=request.request_id, error=str(e))
            return None
        vector.source = analyzer.name
        if vector.error is None:
            vector.error = "request deadline exceeded"
        logger.warning("analyzer_cut_off", analyzer=analyzer.name, request_id=request.request_id, fallback=True)
        return vector

    def _merge(self, request: AnalysisRequest, vectors: list[AnalyzerResult], caveats: list[str]) -> AggregateResult:
        mean = sum(v.risk_score for v in vectors) / len(vectors)
        overall = max(0, min(100, int(round(mean))))

        for v in vectors:
            if v.details.get("consensus_override") and not v.degraded and overall < self.consensus_floor:
                overall = self.consensus_floor
                caveats.append(f"{v.source}: confirmed scam consensus raised the overall score")
                break
        for v in vectors:
            if v.degraded:
                caveats.append(f"{v.source}: degraded result ({v.error})")

        return AggregateResult(
            overall_risk_score=overall,
            vectors=vectors,
            sources=[v.source for v in vectors],
            confidence=sum(v.confidence for v in vectors) / len(vectors),
            analysis_id=f"analysis_{uuid.uuid4().hex[:16]}",
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
            request_id=request.request_id,
            caveats=caveats,
            thresholds=self.thresholds,
        )

    def _store(self, request: AnalysisRequest, result: AggregateResult, owner: str | None) -> AggregateResult:
        """Cache the merged result and return its JSON-normalized form, so first call and replays match."""
        entry = {"fingerprint": self.fingerprint(request, owner), "result": json.loads(result.to_json())}
        raw = json.dumps(entry, sort_keys=True, separators=(",", ":"))
        if self.cache is not None:
            try:
                self.cache.set(self.cache_key(request), raw, self.aggregate_ttl)
            except Exception as e:
                logger.warning("aggregate_cache_write_failed", request_id=request.request_id, error=str(e))
        return AggregateResult.from_dict(entry["result"], thresholds=self.thresholds)

    def _transition(self, request: AnalysisRequest, state: AggregationState) -> None:
        logger.debug("aggregate_state", request_id=request.request_id, state=state.value)
        if self._on_state is not None:
            self._on_state(request.request_id, state)


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "deadline exceeded"
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
