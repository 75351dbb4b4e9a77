"""
Application-level exceptions.

Each exception carries a stable error code and an HTTP status so the API server
and pipeline can map failures consistently. Only InvalidRequest, QuotaExceeded
and AggregationFailed ever reach a caller; analyzer and infrastructure errors
are absorbed into degraded results.
"""

from __future__ import annotations

from typing import Any


class ScamShieldError(Exception):
    """Base error with a machine-readable code."""

    code = "scamshield_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        out.update(self.context)
        return out


class InvalidRequest(ScamShieldError):
    """Missing or malformed request fields; rejected before dispatch, no quota consumed."""

    code = "invalid_request"
    status_code = 400


class IdempotencyConflict(InvalidRequest):
    """Idempotency key already used for a different payload or caller."""

    code = "idempotency_conflict"
    status_code = 409


class QuotaExceeded(ScamShieldError):
    """User-visible rate limit denial. Includes reset time and a wait string."""

    code = "quota_exceeded"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        reset_at: float,
        retry_after: str,
        limit: int | None = None,
    ) -> None:
        super().__init__(message, reset_at=reset_at, retry_after=retry_after, limit=limit)
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.limit = limit


class AnalyzerDegraded(ScamShieldError):
    """Internal: an analyzer fell back to stale or heuristic data. Logged, never raised to callers."""

    code = "analyzer_degraded"

    def __init__(self, analyzer: str, reason: str) -> None:
        super().__init__(f"{analyzer} degraded: {reason}", analyzer=analyzer)
        self.analyzer = analyzer
        self.reason = reason


class AnalyzerUnavailable(ScamShieldError):
    """External lookup for an analyzer is not configured or failed."""

    code = "analyzer_unavailable"


class AggregationFailed(ScamShieldError):
    """Every analyzer failed (fallbacks included). Retryable service error."""

    code = "aggregation_failed"
    status_code = 503
    retryable = True


AggregationError = AggregationFailed


class QuotaStoreError(ScamShieldError):
    """Quota store unreachable or inconsistent."""

    code = "quota_store_error"
    status_code = 503


class CacheError(ScamShieldError):
    """Cache backend failure."""

    code = "cache_error"
