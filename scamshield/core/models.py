"""
Domain models: analysis request, per-analyzer result, aggregate verdict.

Plain dataclasses with to_dict()/from_dict() so results can be cached as JSON
and replayed byte-identically. Risk level is always derived from the score,
never stored independently.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from scamshield.core.exceptions import InvalidRequest


class RiskLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Tier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    PRO = "pro"


@dataclass(frozen=True)
class RiskThresholds:
    """Score bands for the aggregate verdict: <warning_from safe, <danger_from warning, else danger."""

    warning_from: int = 30
    danger_from: int = 70

    def level_for(self, score: float) -> RiskLevel:
        if score < self.warning_from:
            return RiskLevel.SAFE
        if score < self.danger_from:
            return RiskLevel.WARNING
        return RiskLevel.DANGER


DEFAULT_THRESHOLDS = RiskThresholds()


def _clean_identifiers(identifiers: Iterable[str] | str | None) -> tuple[str, ...]:
    if identifiers is None:
        return ()
    if isinstance(identifiers, str):
        identifiers = identifiers.splitlines()
    return tuple(s.strip() for s in identifiers if s and s.strip())


def _coerce(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidRequest(f"unknown {field_name} {value!r} (expected one of: {allowed})", field=field_name) from None


@dataclass(frozen=True)
class AnalysisRequest:
    """
    One user-submitted subject to analyze. Immutable once created.

    subject_identifiers: usernames, handles, phone numbers, wallet addresses.
    request_id doubles as the idempotency key.
    """

    request_id: str
    subject_identifiers: tuple[str, ...] = ()
    content: str | None = None
    asset_symbol: str | None = None
    urgency: Urgency = Urgency.MEDIUM
    tier: Tier = Tier.FREE

    def __post_init__(self) -> None:
        object.__setattr__(self, "subject_identifiers", _clean_identifiers(self.subject_identifiers))
        content = (self.content or "").strip() or None
        object.__setattr__(self, "content", content)
        symbol = (self.asset_symbol or "").strip() or None
        object.__setattr__(self, "asset_symbol", symbol)
        object.__setattr__(self, "urgency", _coerce(Urgency, self.urgency, "urgency"))
        object.__setattr__(self, "tier", _coerce(Tier, self.tier, "tier"))
        object.__setattr__(self, "request_id", (self.request_id or "").strip())

    @property
    def normalized_identifiers(self) -> list[str]:
        """Lowercased, de-duplicated, sorted identifiers. Order-insensitive for cache keys."""
        return sorted({s.lower() for s in self.subject_identifiers})

    @property
    def normalized_symbol(self) -> str | None:
        return self.asset_symbol.upper() if self.asset_symbol else None

    def digest(self, *parts: str) -> str:
        """Stable short hash over the named normalized fields (identifiers, content, asset)."""
        h = hashlib.sha256()
        for part in parts:
            if part == "identifiers":
                value = "\n".join(self.normalized_identifiers)
            elif part == "content":
                value = self.content or ""
            elif part == "asset":
                value = self.normalized_symbol or ""
            else:
                raise ValueError(f"unknown digest part: {part}")
            h.update(part.encode("utf-8"))
            h.update(b"\x00")
            h.update(value.encode("utf-8"))
            h.update(b"\x00")
        return h.hexdigest()[:24]

    def subject_key(self) -> str:
        """Quota identity when the caller supplies none: hash of the normalized subject."""
        return "subject:" + self.digest("identifiers", "content", "asset")


@dataclass
class AnalyzerResult:
    """
    One risk signal (a "vector") produced by an analyzer.

    error set means a degraded result: stale cache data or a heuristic fallback
    was used instead of the external lookup.
    """

    source: str
    risk_score: float
    confidence: float
    verdict: bool | None = None
    findings: list[str] = field(default_factory=list)
    tags: set[str] = field(default_factory=set)
    latency_ms: float = 0.0
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.risk_score = max(0.0, min(100.0, float(self.risk_score)))
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        self.tags = set(self.tags)

    @property
    def degraded(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "risk_score": round(self.risk_score, 2),
            "confidence": round(self.confidence, 4),
            "verdict": self.verdict,
            "findings": list(self.findings),
            "tags": sorted(self.tags),
            "latency_ms": round(self.latency_ms, 2),
            "error": self.error,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalyzerResult:
        return cls(
            source=data["source"],
            risk_score=data.get("risk_score") or 0.0,
            confidence=data.get("confidence") or 0.0,
            verdict=data.get("verdict"),
            findings=list(data.get("findings") or []),
            tags=set(data.get("tags") or []),
            latency_ms=data.get("latency_ms") or 0.0,
            error=data.get("error"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class AggregateResult:
    """
    Final verdict for one request.

    vectors are in dispatch order, not completion order. sources lists the
    analyzers that contributed a vector.
    """

    overall_risk_score: int
    vectors: list[AnalyzerResult]
    sources: list[str]
    confidence: float
    analysis_id: str
    timestamp: str
    request_id: str
    caveats: list[str] = field(default_factory=list)
    thresholds: RiskThresholds = field(default=DEFAULT_THRESHOLDS, repr=False, compare=False)

    @property
    def risk_level(self) -> RiskLevel:
        return self.thresholds.level_for(self.overall_risk_score)

    @property
    def degraded(self) -> bool:
        return any(v.degraded for v in self.vectors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "overall_risk_score": self.overall_risk_score,
            "risk_level": self.risk_level.value,
            "confidence": round(self.confidence, 4),
            "sources": list(self.sources),
            "vectors": [v.to_dict() for v in self.vectors],
            "caveats": list(self.caveats),
            "degraded": self.degraded,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
    ) -> AggregateResult:
        return cls(
            overall_risk_score=int(data["overall_risk_score"]),
            vectors=[AnalyzerResult.from_dict(v) for v in data.get("vectors") or []],
            sources=list(data.get("sources") or []),
            confidence=float(data.get("confidence") or 0.0),
            analysis_id=data["analysis_id"],
            timestamp=data["timestamp"],
            request_id=data.get("request_id") or "",
            caveats=list(data.get("caveats") or []),
            thresholds=thresholds,
        )

    @classmethod
    def from_json(cls, raw: str, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> AggregateResult:
        return cls.from_dict(json.loads(raw), thresholds=thresholds)
