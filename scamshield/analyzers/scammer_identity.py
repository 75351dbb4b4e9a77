"""
Scammer identity analyzer: checks group member identifiers against known-scammer sources.

Sources:
- Local blacklist: JSON file (SCAMSHIELD_SCAMMER_LIST_PATH), either a list of
  identifiers or a list of {identifier, confidence, tags, details} records.
- Optional HTTP source: POST {"identifiers": [...]} returning
  {"matches": [{identifier, source, confidence, tags}]}.

Score = flagged ratio x 100 x overall source confidence, capped at 95. Overall
confidence is the mean match confidence boosted by 10% per extra agreeing
source (at most 1.2x), also capped at 95.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import httpx

from scamshield.analyzers.base import CachingAnalyzer
from scamshield.cache import Cache
from scamshield.config.settings import ANALYZER_SCAMMER_IDENTITY
from scamshield.core.exceptions import AnalyzerUnavailable
from scamshield.core.http_client import bearer, client_scope, request_json
from scamshield.core.models import AnalysisRequest, AnalyzerResult
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

LOCAL_SOURCE = "local_blacklist"
MAX_SCORE = 95
DEFAULT_MATCH_CONFIDENCE = 80.0
# Confidence when every identifier was checked and nothing matched
CLEAN_CONFIDENCE = 0.6
FALLBACK_CONFIDENCE = 0.3

SUSPICIOUS_PATTERNS = [
    re.compile(r"admin", re.IGNORECASE),
    re.compile(r"support", re.IGNORECASE),
    re.compile(r"official", re.IGNORECASE),
    re.compile(r"\+\d{10,}"),
    re.compile(r"@[a-zA-Z0-9_]+"),
    re.compile(r"investment.*guru", re.IGNORECASE),
    re.compile(r"crypto.*expert", re.IGNORECASE),
    re.compile(r"trader.*pro", re.IGNORECASE),
]


def load_blacklist(path: str | Path | None) -> dict[str, dict[str, Any]]:
    """Read the blacklist file into {lowercased identifier: record}. Missing file -> empty."""
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        logger.warning("scammer_list_missing", path=str(p))
        return {}
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("scammer_list_invalid", path=str(p), error=str(e))
        return {}
    records: dict[str, dict[str, Any]] = {}
    for entry in raw if isinstance(raw, list) else []:
        if isinstance(entry, str):
            entry = {"identifier": entry}
        if not isinstance(entry, dict) or not str(entry.get("identifier") or "").strip():
            continue
        ident = str(entry["identifier"]).strip().lower()
        records[ident] = {
            "identifier": ident,
            "source": str(entry.get("source") or LOCAL_SOURCE),
            "confidence": float(entry.get("confidence", DEFAULT_MATCH_CONFIDENCE)),
            "tags": [str(t) for t in entry.get("tags") or []],
        }
    logger.info("scammer_list_loaded", path=str(p), count=len(records))
    return records


def overall_confidence(matches: list[dict[str, Any]]) -> float:
    """Mean match confidence (0-100), boosted for multiple distinct sources, capped at 95."""
    if not matches:
        return 0.0
    avg = sum(float(m.get("confidence", 0.0)) for m in matches) / len(matches)
    sources = {m.get("source") for m in matches}
    boost = min(1.2, 1 + (len(sources) - 1) * 0.1)
    return min(float(MAX_SCORE), avg * boost)


class ScammerIdentityAnalyzer(CachingAnalyzer):
    name = ANALYZER_SCAMMER_IDENTITY
    cache_fields = ("identifiers",)

    def __init__(
        self,
        cache: Cache | None = None,
        *,
        blacklist: dict[str, dict[str, Any]] | None = None,
        endpoint: str = "",
        api_key: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        cache_ttl: float | None = None,
    ) -> None:
        super().__init__(cache, timeout=timeout, cache_ttl=cache_ttl)
        self.blacklist = blacklist or {}
        self.endpoint = endpoint
        self.api_key = api_key
        self.client = client

    async def lookup(self, request: AnalysisRequest) -> AnalyzerResult:
        identifiers = request.normalized_identifiers
        if not identifiers:
            return AnalyzerResult(
                source=self.name,
                risk_score=0,
                confidence=0.5,
                verdict=False,
                findings=["No member identifiers supplied"],
            )
        if not self.blacklist and not self.endpoint:
            raise AnalyzerUnavailable("no scammer sources configured", analyzer=self.name)

        matches = [dict(self.blacklist[i]) for i in identifiers if i in self.blacklist]
        checked = [LOCAL_SOURCE] if self.blacklist else []
        if self.endpoint:
            matches.extend(await self._remote_matches(identifiers))
            checked.append("remote")

        flagged = sorted({m["identifier"] for m in matches})
        if not flagged:
            return AnalyzerResult(
                source=self.name,
                risk_score=0,
                confidence=CLEAN_CONFIDENCE,
                verdict=False,
                findings=[
                    "No known scammers detected in member list",
                    f"Checked {len(identifiers)} identifiers against: {', '.join(checked)}",
                ],
                details={"flagged_members": [], "sources_checked": checked},
            )

        conf = overall_confidence(matches)
        score = min(MAX_SCORE, round(len(flagged) / len(identifiers) * 100 * conf / 100))
        tags = {t for m in matches for t in m.get("tags") or []}
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=conf / 100,
            verdict=True,
            findings=[
                f"Flagged members: {', '.join(flagged)}",
                f"{len(flagged)} of {len(identifiers)} identifiers matched known scammer records",
            ],
            tags=tags | {"known_scammer"},
            details={
                "flagged_members": flagged,
                "sources_checked": checked,
                "match_sources": sorted({str(m.get("source")) for m in matches}),
            },
        )

    async def _remote_matches(self, identifiers: list[str]) -> list[dict[str, Any]]:
        async with client_scope(self.client) as client:
            data = await request_json(
                client,
                "POST",
                self.endpoint,
                json={"identifiers": identifiers},
                headers=bearer(self.api_key),
                timeout=self.timeout,
            )
        wanted = set(identifiers)
        out: list[dict[str, Any]] = []
        for m in (data or {}).get("matches") or []:
            ident = str(m.get("identifier") or "").strip().lower()
            if ident not in wanted:
                continue
            out.append(
                {
                    "identifier": ident,
                    "source": str(m.get("source") or "remote"),
                    "confidence": float(m.get("confidence", DEFAULT_MATCH_CONFIDENCE)),
                    "tags": [str(t) for t in m.get("tags") or []],
                }
            )
        return out

    def fallback(self, request: AnalysisRequest) -> AnalyzerResult:
        members = list(request.subject_identifiers)
        flagged = [m for m in members if any(p.search(m) for p in SUSPICIOUS_PATTERNS)]
        score = (len(flagged) * 100 // len(members)) if members else 0
        findings = ["Basic pattern analysis (external scammer sources unavailable)"]
        if flagged:
            findings.append(f"Suspicious member names: {', '.join(flagged)}")
        return AnalyzerResult(
            source=self.name,
            risk_score=score,
            confidence=FALLBACK_CONFIDENCE,
            verdict=bool(flagged),
            findings=findings,
            details={"flagged_members": flagged},
        )
