"""
Tests for the built-in analyzers: cache-first lookups, write-through TTLs,
stale reads and heuristic fallbacks. External HTTP is served by httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from scamshield.analyzers import (
    AssetVerificationAnalyzer,
    LanguagePatternAnalyzer,
    PriceManipulationAnalyzer,
    ScammerIdentityAnalyzer,
)
from scamshield.analyzers.base import STALE_CONFIDENCE_FACTOR
from scamshield.analyzers.price_manipulation import score_market
from scamshield.analyzers.scammer_identity import load_blacklist, overall_confidence
from scamshield.core.exceptions import CacheError
from scamshield.core.models import AnalysisRequest

LANGUAGE_URL = "https://lang.test/analyze"


class Upstream:
    """Scriptable MockTransport handler that counts calls."""

    def __init__(self, payload=None, status: int = 200, delay: float = 0.0):
        self.payload = payload if payload is not None else {}
        self.status = status
        self.delay = delay
        self.calls = 0
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status, json=self.payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def run(coro):
    return asyncio.run(coro)


def _language(upstream: Upstream, cache, **kwargs) -> LanguagePatternAnalyzer:
    return LanguagePatternAnalyzer(
        cache,
        endpoint=LANGUAGE_URL,
        client=upstream.client(),
        cache_ttl=1800,
        **kwargs,
    )


# --- Cache-first template ---


def test_cache_hit_skips_lookup(cache):
    """Second analyze of the same content is served from cache with no external call."""
    upstream = Upstream({"risk_score": 40, "risk_factors": ["urgency"], "confidence": 0.9})
    analyzer = _language(upstream, cache)
    req = AnalysisRequest(request_id="r1", content="Act now before it's gone")

    first = run(analyzer.analyze(req))
    second = run(analyzer.analyze(AnalysisRequest(request_id="r2", content="Act now before it's gone")))

    assert upstream.calls == 1
    assert first.risk_score == 40
    assert first.error is None
    assert second.risk_score == 40
    assert "cached" in second.tags
    assert "cached" not in first.tags


def test_write_through_respects_ttl(cache, clock):
    """After the analyzer TTL the entry is no longer fresh and the lookup runs again."""
    upstream = Upstream({"risk_score": 10})
    analyzer = _language(upstream, cache)
    req = AnalysisRequest(request_id="r1", content="hello there")

    run(analyzer.analyze(req))
    clock.advance(1799)
    run(analyzer.analyze(req))
    assert upstream.calls == 1
    clock.advance(2)
    run(analyzer.analyze(req))
    assert upstream.calls == 2


def test_stale_entry_preferred_over_fallback(cache, clock):
    """On lookup failure a retained stale value wins, flagged and with reduced confidence."""
    upstream = Upstream({"risk_score": 42, "confidence": 0.8})
    analyzer = _language(upstream, cache)
    req = AnalysisRequest(request_id="r1", content="Totally normal message")
    run(analyzer.analyze(req))

    clock.advance(1801)
    upstream.status = 500
    result = run(analyzer.analyze(req))

    assert result.risk_score == 42
    assert result.degraded
    assert result.error.startswith("stale data")
    assert "stale" in result.tags
    assert result.confidence == pytest.approx(0.8 * STALE_CONFIDENCE_FACTOR)


def test_external_failure_without_cache_uses_fallback(cache):
    """HTTP 500 and nothing cached: keyword fallback with error set, never an exception."""
    upstream = Upstream(status=500)
    analyzer = _language(upstream, cache)
    req = AnalysisRequest(request_id="r1", content="Guaranteed returns for everyone")

    result = run(analyzer.analyze(req))
    assert result.degraded
    assert "fallback" in result.tags
    # 1 phrase x 15 + 1 tactic (guaranteed profits) x 20
    assert result.risk_score == 35
    assert result.confidence < 0.5


def test_degraded_results_are_not_cached(cache):
    """A fallback result is not written through, so the next call retries the lookup."""
    upstream = Upstream(status=503)
    analyzer = _language(upstream, cache)
    req = AnalysisRequest(request_id="r1", content="some text")
    run(analyzer.analyze(req))
    upstream.status = 200
    upstream.payload = {"risk_score": 5}
    result = run(analyzer.analyze(req))
    assert result.error is None
    assert result.risk_score == 5


def test_lookup_timeout_falls_back(cache):
    upstream = Upstream({"risk_score": 99}, delay=1.0)
    analyzer = _language(upstream, cache, timeout=0.05)
    result = run(analyzer.analyze(AnalysisRequest(request_id="r1", content="Act now!")))
    assert result.error == "lookup timed out"
    assert "fallback" in result.tags


def test_broken_cache_is_skipped():
    """Cache errors never fail the analyzer; the lookup simply runs."""
    broken = MagicMock()
    broken.get.side_effect = CacheError("cache down")
    broken.get_stale.side_effect = CacheError("cache down")
    broken.set.side_effect = CacheError("cache down")
    upstream = Upstream({"risk_score": 12})
    analyzer = _language(upstream, broken)
    result = run(analyzer.analyze(AnalysisRequest(request_id="r1", content="hi")))
    assert result.risk_score == 12
    assert result.error is None


def test_language_without_endpoint_uses_keyword_scan(cache):
    analyzer = LanguagePatternAnalyzer(cache)
    req = AnalysisRequest(request_id="r1", content="URGENT: exclusive opportunity, double your money")
    result = run(analyzer.analyze(req))
    assert result.degraded
    # phrases: urgent, exclusive opportunity, double your money; tactics: urgency, fomo
    assert result.risk_score == 3 * 15 + 2 * 20
    assert "urgency_pressure" in result.tags


# --- Scammer identity ---


def test_blacklist_matches_score(tmp_path, cache):
    """2 of 4 members flagged at 80 confidence -> round(50 x 0.8) = 40."""
    path = tmp_path / "scammers.json"
    path.write_text(json.dumps(["@CryptoKing", {"identifier": "+15550001111", "confidence": 80, "tags": ["impersonation"]}]))
    analyzer = ScammerIdentityAnalyzer(cache, blacklist=load_blacklist(path))
    req = AnalysisRequest(request_id="r1", subject_identifiers=("@cryptoking", "+15550001111", "alice", "bob"))

    result = run(analyzer.analyze(req))
    assert result.error is None
    assert result.verdict is True
    assert result.risk_score == 40
    assert result.confidence == pytest.approx(0.8)
    assert result.details["flagged_members"] == ["+15550001111", "@cryptoking"]
    assert "impersonation" in result.tags


def test_blacklist_and_remote_sources_combine(cache):
    upstream = Upstream({"matches": [{"identifier": "Alice", "source": "scamwatch", "confidence": 90}]})
    analyzer = ScammerIdentityAnalyzer(
        cache,
        blacklist={"alice": {"identifier": "alice", "source": "local_blacklist", "confidence": 80.0, "tags": []}},
        endpoint="https://scammers.test/check",
        client=upstream.client(),
    )
    result = run(analyzer.analyze(AnalysisRequest(request_id="r1", subject_identifiers=("alice", "bob"))))
    assert upstream.calls == 1
    assert json.loads(upstream.requests[0].content) == {"identifiers": ["alice", "bob"]}
    # (80 + 90) / 2 x 1.1 for two agreeing sources
    assert result.confidence == pytest.approx(0.935)
    assert result.risk_score == round(50 * 0.935)


def test_overall_confidence_boost_is_capped():
    matches = [{"confidence": 90, "source": s} for s in "abcdef"]
    assert overall_confidence(matches) == 95.0
    assert overall_confidence([]) == 0.0


def test_identity_without_sources_falls_back_to_patterns(cache):
    analyzer = ScammerIdentityAnalyzer(cache)
    req = AnalysisRequest(request_id="r1", subject_identifiers=("admin_support", "bob", "+12345678901", "carol"))
    result = run(analyzer.analyze(req))
    assert result.degraded
    assert result.risk_score == 50
    assert result.details["flagged_members"] == ["admin_support", "+12345678901"]


def test_load_blacklist_missing_file(tmp_path):
    assert load_blacklist(tmp_path / "absent.json") == {}
    assert load_blacklist("") == {}


# --- Price manipulation ---


def test_score_market_signals():
    """Volatility 33% (+15), 5 pump steps (+20), 6 volume spikes (+25)."""
    prices = [1.0, 2.0] * 5
    volumes = [100.0] * 20 + [1000.0] * 6
    score, findings, details = score_market(prices, volumes)
    assert score == 60
    assert details["pump_steps"] == 5
    assert details["volume_spikes"] == 6
    assert len(findings) == 3


def test_price_analyzer_uses_market_chart(cache):
    upstream = Upstream({"prices": [[i, 1.0] for i in range(30)], "total_volumes": [[i, 500.0] for i in range(30)]})
    analyzer = PriceManipulationAnalyzer(cache, base_url="https://cg.test/api/v3", client=upstream.client())
    req = AnalysisRequest(request_id="r1", asset_symbol="PEPE")
    assert analyzer.applies_to(req)
    result = run(analyzer.analyze(req))
    assert upstream.requests[0].url.path == "/api/v3/coins/pepe/market_chart"
    assert result.risk_score == 0
    assert result.error is None
    assert result.confidence == pytest.approx(0.85)


def test_price_analyzer_empty_history_falls_back(cache):
    upstream = Upstream({"prices": []})
    analyzer = PriceManipulationAnalyzer(cache, base_url="https://cg.test", client=upstream.client())
    result = run(analyzer.analyze(AnalysisRequest(request_id="r1", asset_symbol="MOONPUMP")))
    assert result.degraded
    assert result.risk_score == 65


def test_asset_analyzers_skip_requests_without_asset():
    req = AnalysisRequest(request_id="r1", subject_identifiers=("alice",))
    assert not PriceManipulationAnalyzer().applies_to(req)
    assert not AssetVerificationAnalyzer().applies_to(req)


# --- Asset verification ---


def test_asset_verification_risk(cache):
    coin = {
        "name": "Shady",
        "market_cap_rank": 1500,
        "links": {"homepage": [""], "whitepaper": ""},
        "market_data": {"total_volume": {"usd": 500_000}},
    }
    upstream = Upstream(coin)
    analyzer = AssetVerificationAnalyzer(cache, base_url="https://cg.test", client=upstream.client())
    result = run(analyzer.analyze(AnalysisRequest(request_id="r1", asset_symbol="shady")))
    assert result.risk_score == 20 + 25 + 20 + 15
    assert result.details["verified"] is True


def test_asset_verification_fallback_patterns(cache):
    upstream = Upstream(status=404)
    analyzer = AssetVerificationAnalyzer(cache, base_url="https://cg.test", client=upstream.client())
    scammy = run(analyzer.analyze(AnalysisRequest(request_id="r1", asset_symbol="SAFEMOON")))
    plain = run(analyzer.analyze(AnalysisRequest(request_id="r2", asset_symbol="BTC")))
    assert scammy.risk_score == 75
    assert plain.risk_score == 25
    assert scammy.degraded and plain.degraded
