"""
Language pattern analyzer: manipulation tactics in message content.

With an endpoint configured the text goes to an HTTP language model
(POST {"text": ...} -> {risk_score, risk_factors, suspicious_phrases,
sentiment_score, confidence}). Without one, or on failure, a keyword and
regex scan runs: 15 points per suspicious phrase plus 20 per tactic, capped
at 100.
"""

from __future__ import annotations

import re

import httpx

from scamshield.analyzers.base import CachingAnalyzer, clamp_score
from scamshield.cache import Cache
from scamshield.config.settings import ANALYZER_LANGUAGE_PATTERN
from scamshield.core.exceptions import AnalyzerUnavailable
from scamshield.core.http_client import bearer, client_scope, request_json
from scamshield.core.models import AnalysisRequest, AnalyzerResult

MAX_TEXT_CHARS = 10_000
PHRASE_POINTS = 15
TACTIC_POINTS = 20
MODEL_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.4

SUSPICIOUS_PHRASES = [
    "guaranteed returns",
    "risk-free",
    "urgent",
    "limited time",
    "act now",
    "exclusive opportunity",
    "easy money",
    "get rich quick",
    "double your money",
    "insider information",
]

TACTICS = {
    "urgency pressure": re.compile(r"urgent|hurry|limited|act now|deadline", re.IGNORECASE),
    "fear of missing out": re.compile(r"exclusive|limited|don't miss|last chance", re.IGNORECASE),
    "guaranteed profits": re.compile(r"guaranteed|100%|risk-free|sure thing", re.IGNORECASE),
}


def scan_text(text: str) -> tuple[list[str], list[str]]:
    """Return (matched phrases, matched tactics) for the keyword scan."""
    lowered = text.lower()
    phrases = [p for p in SUSPICIOUS_PHRASES if p in lowered]
    tactics = [name for name, pattern in TACTICS.items() if pattern.search(text)]
    return phrases, tactics


class LanguagePatternAnalyzer(CachingAnalyzer):
    name = ANALYZER_LANGUAGE_PATTERN
    cache_fields = ("content",)

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        endpoint: str = "",
        api_key: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> None:
        super().__init__(cache, timeout=timeout, cache_ttl=cache_ttl)
        self.endpoint = endpoint
        self.api_key = api_key
        self.client = client

    async def lookup(self, request: AnalysisRequest) -> AnalyzerResult:
        if not request.content:
            return AnalyzerResult(
                source=self.name,
                risk_score=0,
                confidence=0.5,
                verdict=False,
                findings=["No message content supplied"],
            )
        if not self.endpoint:
            raise AnalyzerUnavailable("no language model endpoint configured", analyzer=self.name)

        async with client_scope(self.client) as client:
            data = await request_json(
                client,
                "POST",
                self.endpoint,
                json={"text": request.content[:MAX_TEXT_CHARS]},
                headers=bearer(self.api_key),
                timeout=self.timeout,
            )
        data = data or {}
        score = clamp_score(data.get("risk_score", data.get("riskScore")))
        factors = [str(f) for f in data.get("risk_factors", data.get("riskFactors")) or []]
        phrases = [str(p) for p in data.get("suspicious_phrases", data.get("suspiciousPhrases")) or []]
        findings = [f"Manipulation tactic: {f}" for f in factors]
        if phrases:
            findings.append(f"Suspicious phrases: {', '.join(phrases)}")
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=float(data.get("confidence", MODEL_CONFIDENCE)),
            verdict=score >= 50,
            findings=findings or ["No manipulation patterns detected"],
            tags={f.lower().replace(" ", "_") for f in factors},
            details={
                "suspicious_phrases": phrases,
                "sentiment_score": data.get("sentiment_score", data.get("sentimentScore")),
            },
        )

    def fallback(self, request: AnalysisRequest) -> AnalyzerResult:
        phrases, tactics = scan_text(request.content or "")
        score = min(100, len(phrases) * PHRASE_POINTS + len(tactics) * TACTIC_POINTS)
        findings = [f"Manipulation tactic: {t}" for t in tactics]
        if phrases:
            findings.append(f"Suspicious phrases: {', '.join(phrases)}")
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=FALLBACK_CONFIDENCE,
            verdict=score >= 50,
            findings=findings or ["No manipulation patterns detected"],
            tags={t.replace(" ", "_") for t in tactics},
            details={"suspicious_phrases": phrases},
        )
