"""
FastAPI server: HTTP surface over the risk pipeline.

POST /analyze runs validate -> replay or admit -> aggregate. It returns the
aggregate result, 429 with reset details when rate limited, 400 for malformed
input, 409 when an idempotency key is reused for a different request and 503
when no analyzer produced a result. GET /usage/{subject} reports quota usage
per endpoint. Components are built once in the lifespan hook from settings
(env + .env).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from scamshield import __version__
from scamshield.aggregator import Aggregator, RiskPipeline
from scamshield.analyzers import build_default_analyzers
from scamshield.cache import MemoryCache
from scamshield.config import get_settings
from scamshield.core.exceptions import QuotaExceeded, ScamShieldError
from scamshield.core.models import AnalysisRequest, Tier, Urgency
from scamshield.quota import SqlQuotaStore
from scamshield.rate_limiter import RateLimiter
from scamshield.shield_logging import bind_request, get_logger

logger = get_logger(__name__)

HTTP_CLIENT_TIMEOUT_SEC = 20.0


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------

class AnalyzeRequestBody(BaseModel):
    """POST /analyze body."""

    model_config = ConfigDict(populate_by_name=True)

    subject_identifiers: list[str] = Field(
        default_factory=list,
        alias="subjectIdentifiers",
        description="Group member usernames, handles, phone numbers or wallet addresses",
    )
    content: str | None = Field(None, description="Message text to analyze")
    asset_symbol: str | None = Field(None, alias="assetSymbol", description="Token symbol or coin id")
    tier: Tier = Field(Tier.FREE, description="Subscription tier")
    idempotency_key: str = Field(..., alias="idempotencyKey", min_length=1, max_length=128)
    urgency: Urgency = Field(Urgency.MEDIUM)
    endpoint: str | None = Field(None, description="Quota endpoint; defaults to group-analysis")
    user_id: str | None = Field(None, alias="userId", max_length=128, description="Quota identity")


class RateLimitedResponse(BaseModel):
    """429 body."""

    rateLimited: bool = True
    resetAt: str
    retryAfter: str
    message: str


# -----------------------------------------------------------------------------
# Lifespan and dependencies
# -----------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build cache, quota store, analyzers and pipeline; release them on shutdown."""
    settings = get_settings()
    store = SqlQuotaStore(settings.database_url)
    store.init_db()
    try:
        purged = store.purge_before(int(time.time() - settings.quota_retention_sec))
        if purged:
            logger.info("quota_windows_purged", count=purged)
    except ScamShieldError as e:
        logger.warning("quota_purge_skip", error=str(e))

    cache = MemoryCache(max_entries=settings.cache_max_entries, stale_ttl=settings.stale_ttl_sec)
    client = httpx.AsyncClient(timeout=HTTP_CLIENT_TIMEOUT_SEC)
    aggregator = Aggregator(
        build_default_analyzers(settings, cache, client),
        cache,
        request_timeout=settings.request_timeout_sec,
        fallback_grace=settings.fallback_grace_sec,
        aggregate_ttl=settings.aggregate_ttl_sec,
        thresholds=settings.thresholds,
        consensus_floor=settings.consensus_floor,
    )
    app.state.pipeline = RiskPipeline(
        RateLimiter(store, settings.rate_limits),
        aggregator,
        default_endpoint=settings.default_endpoint,
    )
    logger.info("api_started", analyzers=[a.name for a in aggregator.analyzers])

    yield

    await client.aclose()
    store.dispose()
    logger.info("api_stopped")


def get_pipeline(request: Request) -> RiskPipeline:
    return request.app.state.pipeline


# -----------------------------------------------------------------------------
# App and error mapping
# -----------------------------------------------------------------------------

app = FastAPI(
    title="ScamShield Risk API",
    description="Aggregated scam risk verdicts from identity, language, market and AI signals.",
    version=__version__,
    lifespan=lifespan,
)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@app.exception_handler(QuotaExceeded)
async def quota_exceeded_handler(request: Request, exc: QuotaExceeded) -> JSONResponse:
    body = RateLimitedResponse(
        resetAt=_iso(exc.reset_at),
        retryAfter=exc.retry_after,
        message=exc.message,
    )
    headers = {"Retry-After": str(max(0, int(exc.reset_at - time.time())))}
    if exc.limit is not None:
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = "0"
    return JSONResponse(status_code=429, content=body.model_dump(), headers=headers)


@app.exception_handler(ScamShieldError)
async def scamshield_error_handler(request: Request, exc: ScamShieldError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "message": "Malformed request", "retryable": False, "errors": errors},
    )


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------

@app.post("/analyze")
async def analyze(
    body: AnalyzeRequestBody,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    pipeline: RiskPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """
    Aggregate risk verdict for a group, message or asset.

    Quota identity is userId (body), else the X-User-Id header, else a hash of
    the normalized subject. Repeating an idempotencyKey replays the first result
    without consuming quota; reusing it for a different payload or user is 409.
    """
    request = AnalysisRequest(
        request_id=body.idempotency_key,
        subject_identifiers=tuple(body.subject_identifiers),
        content=body.content,
        asset_symbol=body.asset_symbol,
        urgency=body.urgency,
        tier=body.tier,
    )
    user = (body.user_id or x_user_id or "").strip()
    subject_key = f"user:{user}" if user else None
    out = await pipeline.run(request, subject_key=subject_key, endpoint=body.endpoint)

    log = bind_request(request.request_id, user=user or None)
    if out.replayed:
        log.info("analyze_replayed", analysis_id=out.result.analysis_id)
        return JSONResponse(status_code=200, content=out.result.to_dict(), headers={"Idempotent-Replayed": "true"})

    admission = out.admission
    log.info("analyze_done", analysis_id=out.result.analysis_id, remaining=admission.remaining)
    headers = {
        "X-RateLimit-Limit": str(admission.limit),
        "X-RateLimit-Remaining": str(admission.remaining),
        "X-RateLimit-Reset": _iso(admission.reset_at),
    }
    return JSONResponse(status_code=200, content=out.result.to_dict(), headers=headers)


@app.get("/usage/{subject}")
def usage(
    subject: str,
    tier: Tier = Query(Tier.FREE),
    pipeline: RiskPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Current-window usage per endpoint for a user id (same identity as userId on /analyze)."""
    subject = subject.strip()
    report = pipeline.usage(f"user:{subject}", tier.value)
    for entry in report.values():
        entry["reset_at"] = _iso(entry["reset_at"])
    return {"subject": subject, "tier": tier.value, "usage": report}


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness check: API is up."""
    return {"status": "ok", "version": __version__}
