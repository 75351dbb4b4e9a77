"""
Price manipulation analyzer: pump-and-dump signals from 30 days of market data.

Signals (CoinGecko market_chart):
- volatility = coefficient of variation of price x 100; >50 adds 30, >20 adds 15
- volume spikes (> 3x mean volume); more than 5 adds 25
- pump steps (> 20% rise between consecutive points); more than 3 adds 20
"""

from __future__ import annotations

import re
import statistics
from typing import Any

import httpx

from scamshield.analyzers.base import CachingAnalyzer
from scamshield.cache import Cache
from scamshield.config.settings import ANALYZER_PRICE_MANIPULATION, DEFAULT_COINGECKO_URL
from scamshield.core.exceptions import AnalyzerUnavailable
from scamshield.core.http_client import client_scope, request_json
from scamshield.core.models import AnalysisRequest, AnalyzerResult

HISTORY_DAYS = 30
VOLUME_SPIKE_FACTOR = 3.0
PUMP_STEP = 0.20
MARKET_CONFIDENCE = 0.85
FALLBACK_CONFIDENCE = 0.25

PUMP_NAME_PATTERN = re.compile(r"moon|pump|100x|1000x|safe|inu|elon|baby|rocket", re.IGNORECASE)


def volatility(prices: list[float]) -> float:
    if len(prices) < 2:
        return 0.0
    mean = statistics.fmean(prices)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(prices) / mean * 100


def volume_spikes(volumes: list[float]) -> int:
    if not volumes:
        return 0
    mean = statistics.fmean(volumes)
    return sum(1 for v in volumes if v > mean * VOLUME_SPIKE_FACTOR)


def pump_steps(prices: list[float]) -> int:
    return sum(1 for prev, cur in zip(prices, prices[1:]) if prev > 0 and (cur - prev) / prev > PUMP_STEP)


def score_market(prices: list[float], volumes: list[float]) -> tuple[int, list[str], dict[str, Any]]:
    vol = volatility(prices)
    spikes = volume_spikes(volumes)
    steps = pump_steps(prices)

    score = 0
    findings: list[str] = []
    if vol > 50:
        score += 30
        findings.append(f"Extreme price volatility ({vol:.1f}%)")
    elif vol > 20:
        score += 15
        findings.append(f"High price volatility ({vol:.1f}%)")
    if spikes > 5:
        score += 25
        findings.append(f"Unusual volume spikes detected ({spikes})")
    if steps > 3:
        score += 20
        findings.append(f"Repeated sharp price increases ({steps})")
    details = {
        "volatility": round(vol, 2),
        "volume_spikes": spikes,
        "pump_steps": steps,
        "average_volume": round(statistics.fmean(volumes), 2) if volumes else 0.0,
        "recent_prices": [round(p, 8) for p in prices[-7:]],
    }
    return min(100, score), findings, details


class PriceManipulationAnalyzer(CachingAnalyzer):
    name = ANALYZER_PRICE_MANIPULATION
    cache_fields = ("asset",)

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        base_url: str = DEFAULT_COINGECKO_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> None:
        super().__init__(cache, timeout=timeout, cache_ttl=cache_ttl)
        self.base_url = base_url.rstrip("/")
        self.client = client

    def applies_to(self, request: AnalysisRequest) -> bool:
        return bool(request.asset_symbol)

    async def lookup(self, request: AnalysisRequest) -> AnalyzerResult:
        coin_id = (request.asset_symbol or "").lower()
        async with client_scope(self.client) as client:
            data = await request_json(
                client,
                "GET",
                f"{self.base_url}/coins/{coin_id}/market_chart",
                params={"vs_currency": "usd", "days": HISTORY_DAYS},
                timeout=self.timeout,
            )
        prices = [float(p[1]) for p in (data or {}).get("prices") or [] if len(p) > 1]
        volumes = [float(v[1]) for v in (data or {}).get("total_volumes") or [] if len(v) > 1]
        if not prices:
            raise AnalyzerUnavailable(f"no price history for {coin_id}", analyzer=self.name)

        score, findings, details = score_market(prices, volumes)
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=MARKET_CONFIDENCE,
            verdict=score >= 50,
            findings=findings or ["No manipulation patterns in recent trading"],
            tags={"pump_and_dump"} if score >= 50 else set(),
            details=details,
        )

    def fallback(self, request: AnalysisRequest) -> AnalyzerResult:
        symbol = request.normalized_symbol or ""
        findings = ["Market data unavailable; symbol heuristics only"]
        score = 35
        if PUMP_NAME_PATTERN.search(symbol):
            score = 55
            findings.append(f"Symbol {symbol} matches common pump-and-dump naming")
        if any(ch.isdigit() for ch in symbol) or len(symbol) > 6:
            score += 10
            findings.append("Unusual symbol format")
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=FALLBACK_CONFIDENCE,
            verdict=score >= 50,
            findings=findings,
        )
