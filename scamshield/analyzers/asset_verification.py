"""
Asset verification analyzer: is the token a listed project with a real footprint.

Risk from the CoinGecko coin record: no market-cap rank +30 (rank > 1000 +20),
no homepage +25, 24h volume under $1M +20, no whitepaper +15.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from scamshield.analyzers.base import CachingAnalyzer
from scamshield.cache import Cache
from scamshield.config.settings import ANALYZER_ASSET_VERIFICATION, DEFAULT_COINGECKO_URL
from scamshield.core.http_client import client_scope, request_json
from scamshield.core.models import AnalysisRequest, AnalyzerResult

MIN_VOLUME_USD = 1_000_000
VERIFIED_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.3

SCAM_NAME_PATTERNS = ["safe", "moon", "doge", "shib", "floki", "elon", "baby", "mini"]


def _first(values: Any) -> str:
    if isinstance(values, list):
        return next((str(v) for v in values if v), "")
    return str(values or "")


def asset_risk(coin: dict[str, Any]) -> tuple[int, list[str]]:
    score = 0
    findings: list[str] = []
    rank = coin.get("market_cap_rank")
    if not rank:
        score += 30
        findings.append("No market cap ranking")
    elif rank > 1000:
        score += 20
        findings.append(f"Low market cap rank (#{rank})")
    links = coin.get("links") or {}
    if not _first(links.get("homepage")):
        score += 25
        findings.append("No official website")
    volume = ((coin.get("market_data") or {}).get("total_volume") or {}).get("usd") or 0
    if volume < MIN_VOLUME_USD:
        score += 20
        findings.append(f"Low 24h trading volume (${volume:,.0f})")
    if not _first(links.get("whitepaper")):
        score += 15
        findings.append("No whitepaper")
    return min(100, score), findings


class AssetVerificationAnalyzer(CachingAnalyzer):
    name = ANALYZER_ASSET_VERIFICATION
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
            coin = await request_json(
                client,
                "GET",
                f"{self.base_url}/coins/{coin_id}",
                params={"localization": "false", "tickers": "false", "community_data": "false"},
                timeout=self.timeout,
            )
        coin = coin or {}
        score, findings = asset_risk(coin)
        links = coin.get("links") or {}
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=VERIFIED_CONFIDENCE,
            verdict=score >= 50,
            findings=findings or ["Listed asset with complete project information"],
            tags={"unverified_asset"} if score >= 50 else set(),
            details={
                "verified": True,
                "name": coin.get("name"),
                "market_cap_rank": coin.get("market_cap_rank"),
                "homepage": _first(links.get("homepage")) or None,
            },
        )

    def fallback(self, request: AnalysisRequest) -> AnalyzerResult:
        symbol = (request.asset_symbol or "").lower()
        hits = [p for p in SCAM_NAME_PATTERNS if p in symbol]
        score = 75 if hits else 25
        findings = ["Asset could not be verified against market data"]
        if hits:
            findings.append(f"Name contains common scam token patterns: {', '.join(hits)}")
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=FALLBACK_CONFIDENCE,
            verdict=bool(hits),
            findings=findings,
            details={"verified": False},
        )
