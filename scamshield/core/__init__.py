"""
Core types: domain models and exceptions shared by every component.
"""

from scamshield.core.exceptions import (
    AggregationError,
    AggregationFailed,
    AnalyzerDegraded,
    AnalyzerUnavailable,
    CacheError,
    IdempotencyConflict,
    InvalidRequest,
    QuotaExceeded,
    QuotaStoreError,
    ScamShieldError,
)
from scamshield.core.models import (
    AggregateResult,
    AnalysisRequest,
    AnalyzerResult,
    RiskLevel,
    RiskThresholds,
    Tier,
    Urgency,
)

__all__ = [
    "AggregateResult",
    "AggregationError",
    "AggregationFailed",
    "AnalysisRequest",
    "AnalyzerDegraded",
    "AnalyzerResult",
    "AnalyzerUnavailable",
    "CacheError",
    "IdempotencyConflict",
    "InvalidRequest",
    "QuotaExceeded",
    "QuotaStoreError",
    "RiskLevel",
    "RiskThresholds",
    "ScamShieldError",
    "Tier",
    "Urgency",
]
