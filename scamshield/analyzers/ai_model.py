"""
AI model analyzer: the ensemble combiner exposed as one analyzer.

Vector score is the ensemble confidence as a percentage. A not-scam verdict is
capped just below the danger band so it can never push a subject into danger
on its own. A confirmed_scam consensus is flagged in details so the aggregator
can lift the overall score to the danger floor.
"""

from __future__ import annotations

from scamshield.analyzers.base import CachingAnalyzer
from scamshield.cache import Cache
from scamshield.config.settings import ANALYZER_AI_MODEL
from scamshield.core.exceptions import AnalyzerUnavailable
from scamshield.core.models import AnalysisRequest, AnalyzerResult
from scamshield.ensemble.combiner import EnsembleCombiner, EnsembleResult, EnsembleRiskLevel

NOT_SCAM_CEILING = 69
KEYWORD_POINTS = 15


class AIModelAnalyzer(CachingAnalyzer):
    name = ANALYZER_AI_MODEL
    cache_fields = ("identifiers", "content")

    def __init__(
        self,
        combiner: EnsembleCombiner,
        cache: Cache | None = None,
        *,
        score_ceiling: int = NOT_SCAM_CEILING,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> None:
        super().__init__(cache, timeout=timeout, cache_ttl=cache_ttl)
        self.combiner = combiner
        self.score_ceiling = score_ceiling

    async def lookup(self, request: AnalysisRequest) -> AnalyzerResult:
        outcome = await self.combiner.combine(request)
        if outcome.fallback:
            failed = ", ".join(f"{k} ({v})" for k, v in sorted(outcome.failures.items()))
            raise AnalyzerUnavailable(f"all models failed: {failed or 'none configured'}", analyzer=self.name)
        return self.to_vector(outcome)

    def fallback(self, request: AnalysisRequest) -> AnalyzerResult:
        return self.to_vector(self.combiner.fallback_result(request))

    def to_vector(self, outcome: EnsembleResult) -> AnalyzerResult:
        if outcome.fallback:
            hits = sum(len(v) for v in outcome.keyword_hits.values())
            score = min(self.score_ceiling, hits * KEYWORD_POINTS)
        else:
            score = round(outcome.confidence * 100)
            if not outcome.is_scam:
                score = min(self.score_ceiling, score)

        findings = [outcome.reasoning] if outcome.reasoning else []
        if outcome.threat_types:
            findings.append(f"Threat types: {', '.join(outcome.threat_types)}")
        findings.extend(f"Recommendation: {r}" for r in outcome.recommendations)

        details = outcome.to_dict()
        details["consensus_override"] = (
            outcome.is_scam
            and not outcome.fallback
            and outcome.risk_level == EnsembleRiskLevel.CONFIRMED_SCAM
        )
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=outcome.confidence,
            verdict=outcome.is_scam,
            findings=findings,
            tags=set(outcome.threat_types),
            details=details,
        )
