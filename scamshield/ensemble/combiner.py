"""
Ensemble combiner: folds several AI model verdicts into one.

Responsibilities:
- Call every sub-model concurrently, each under its own deadline.
- Verdict by strict majority of the models that answered (ties -> not a scam).
- Confidence as the trust-weighted mean over all responders, with weights
  renormalized over the models that actually answered.
- Band the result into safe / suspicious / likely_scam / confirmed_scam.
- Never raise: if no model answers, return a low-confidence keyword fallback.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from scamshield.config.settings import EnsembleConfig
from scamshield.core.models import AnalysisRequest
from scamshield.ensemble.backends import ModelBackend, ModelVerdict
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

FALLBACK_RECOMMENDATIONS = ["Review content manually", "Exercise caution"]

SCAM_KEYWORDS: dict[str, list[str]] = {
    "phishing": [
        "verify your account", "suspend", "urgent action required",
        "click here immediately", "limited time offer", "act now",
        "your account will be closed", "security alert", "unusual activity",
    ],
    "romance_scam": [
        "soulmate", "destiny", "emergency money", "travel funds",
        "military deployment", "hospital bills", "stuck overseas",
        "western union", "money transfer", "gift cards",
    ],
    "investment_fraud": [
        "guaranteed returns", "risk-free investment", "double your money",
        "exclusive opportunity", "limited spots", "cryptocurrency mining",
        "forex trading", "binary options", "get rich quick",
    ],
    "tech_support_scam": [
        "microsoft support", "apple support", "virus detected", "computer infected",
        "immediate assistance", "remote access", "security breach",
        "suspicious activity", "frozen computer", "expired license",
    ],
}


class EnsembleRiskLevel(str, Enum):
    SAFE = "safe"
    SUSPICIOUS = "suspicious"
    LIKELY_SCAM = "likely_scam"
    CONFIRMED_SCAM = "confirmed_scam"


@dataclass
class EnsembleResult:
    is_scam: bool
    confidence: float
    risk_level: EnsembleRiskLevel
    verdicts: list[ModelVerdict] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    threat_types: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    reasoning: str = ""
    keyword_hits: dict[str, list[str]] = field(default_factory=dict)
    fallback: bool = False
    latency_ms: float = 0.0

    @property
    def responders(self) -> list[str]:
        return [v.model for v in self.verdicts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_scam": self.is_scam,
            "confidence": round(self.confidence, 4),
            "risk_level": self.risk_level.value,
            "responders": self.responders,
            "failures": dict(self.failures),
            "threat_types": list(self.threat_types),
            "recommendations": list(self.recommendations),
            "reasoning": self.reasoning,
            "fallback": self.fallback,
        }


def keyword_scan(text: str) -> dict[str, list[str]]:
    lowered = (text or "").lower()
    hits: dict[str, list[str]] = {}
    for threat, keywords in SCAM_KEYWORDS.items():
        found = [k for k in keywords if k in lowered]
        if found:
            hits[threat] = found
    return hits


class EnsembleCombiner:
    def __init__(self, backends: list[ModelBackend], config: EnsembleConfig | None = None) -> None:
        self.backends = list(backends)
        self.config = config or EnsembleConfig()

    def risk_level(self, is_scam: bool, confidence: float) -> EnsembleRiskLevel:
        """
        Bands checked in order; anything left over is confirmed_scam, including
        a not-scam verdict at high confidence (models confident but outvoted).
        """
        cfg = self.config
        if not is_scam and confidence < cfg.safe_below:
            return EnsembleRiskLevel.SAFE
        if not is_scam and confidence < cfg.suspicious_below:
            return EnsembleRiskLevel.SUSPICIOUS
        if is_scam and confidence < cfg.likely_below:
            return EnsembleRiskLevel.LIKELY_SCAM
        return EnsembleRiskLevel.CONFIRMED_SCAM

    def weighted_confidence(self, verdicts: list[ModelVerdict]) -> float:
        """Trust-weighted mean over responders. Models without a configured weight get an equal share."""
        if not verdicts:
            return 0.0
        configured = self.config.weights
        default_weight = 1.0 / max(1, len(self.backends))
        weights = [configured.get(v.model, default_weight) for v in verdicts]
        total = sum(weights)
        if total <= 0:
            return sum(v.confidence for v in verdicts) / len(verdicts)
        return sum(v.confidence * w for v, w in zip(verdicts, weights)) / total

    async def combine(self, request: AnalysisRequest) -> EnsembleResult:
        start = time.monotonic()
        outcomes = await asyncio.gather(
            *(self._classify(b, request) for b in self.backends),
            return_exceptions=True,
        )

        verdicts: list[ModelVerdict] = []
        failures: dict[str, str] = {}
        for backend, outcome in zip(self.backends, outcomes):
            if isinstance(outcome, ModelVerdict):
                verdicts.append(outcome)
            else:
                failures[backend.name] = _describe(outcome)

        if not verdicts:
            result = self.fallback_result(request, failures)
        else:
            result = self._merge(verdicts, failures)
        result.latency_ms = (time.monotonic() - start) * 1000
        logger.info(
            "ensemble_combined",
            request_id=request.request_id,
            responders=result.responders,
            failed=sorted(failures),
            is_scam=result.is_scam,
            confidence=round(result.confidence, 3),
            risk_level=result.risk_level.value,
            fallback=result.fallback,
        )
        return result

    async def _classify(self, backend: ModelBackend, request: AnalysisRequest) -> ModelVerdict:
        try:
            return await asyncio.wait_for(backend.classify(request), timeout=backend.timeout)
        except Exception as e:
            logger.warning("ensemble_model_failed", model=backend.name, error=_describe(e))
            raise

    def _merge(self, verdicts: list[ModelVerdict], failures: dict[str, str]) -> EnsembleResult:
        scam_votes = sum(1 for v in verdicts if v.is_scam)
        is_scam = scam_votes > len(verdicts) / 2
        confidence = self.weighted_confidence(verdicts)

        threat_types: list[str] = []
        recommendations: list[str] = []
        for v in verdicts:
            threat_types.extend(t for t in v.threat_types if t not in threat_types)
            recommendations.extend(r for r in v.recommendations if r not in recommendations)

        reasoning = (
            f"Ensemble analysis of {len(verdicts)} AI models. "
            f"{scam_votes}/{len(verdicts)} models detected this as a scam. "
            f"Average confidence: {confidence * 100:.1f}%."
        )
        if len(verdicts) > 1:
            spread = max(v.confidence for v in verdicts) - min(v.confidence for v in verdicts)
            agreement = "high agreement" if spread < self.config.agreement_spread else "models disagree"
            reasoning += f" Confidence range: {spread * 100:.1f}% ({agreement})."

        return EnsembleResult(
            is_scam=is_scam,
            confidence=confidence,
            risk_level=self.risk_level(is_scam, confidence),
            verdicts=verdicts,
            failures=failures,
            threat_types=threat_types,
            recommendations=recommendations,
            reasoning=reasoning,
        )

    def fallback_result(self, request: AnalysisRequest, failures: dict[str, str] | None = None) -> EnsembleResult:
        """Low-confidence keyword-only result used when no model answered."""
        failures = dict(failures or {})
        text = " ".join([request.content or "", *request.subject_identifiers])
        hits = keyword_scan(text)
        return EnsembleResult(
            is_scam=False,
            confidence=self.config.fallback_confidence,
            risk_level=EnsembleRiskLevel.SUSPICIOUS,
            failures=failures,
            threat_types=sorted(hits),
            recommendations=list(FALLBACK_RECOMMENDATIONS),
            reasoning="AI analysis unavailable. Manual review recommended.",
            keyword_hits=hits,
            fallback=True,
        )


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    if isinstance(error, asyncio.CancelledError):
        return "cancelled"
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
