"""
Request pipeline: validate -> replay or admit -> aggregate.

Validation runs before admission so malformed requests never consume quota.
Admission is a blocking store call and runs in a worker thread. A repeat of an
already answered idempotency key is replayed before admission and consumes no
quota.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

from scamshield.aggregator.aggregator import Aggregator
from scamshield.core.exceptions import InvalidRequest
from scamshield.core.models import AggregateResult, AnalysisRequest
from scamshield.rate_limiter import Admission, RateLimiter
from scamshield.rate_limiter.quotas import ENDPOINT_GROUP_ANALYSIS
from scamshield.shield_logging import get_logger, request_context

logger = get_logger(__name__)

MAX_CONTENT_CHARS = 10_000
MAX_IDENTIFIERS = 500
MAX_IDENTIFIER_CHARS = 256
ASSET_SYMBOL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.\-]{0,63}$")


def validate_request(request: AnalysisRequest) -> None:
    """Raise InvalidRequest when the request cannot be analyzed."""
    if not request.request_id:
        raise InvalidRequest("idempotency key is required", field="idempotencyKey")
    if not (request.subject_identifiers or request.content or request.asset_symbol):
        raise InvalidRequest(
            "at least one of subject identifiers, content or asset symbol is required",
            field="subjectIdentifiers",
        )
    if len(request.subject_identifiers) > MAX_IDENTIFIERS:
        raise InvalidRequest(f"too many subject identifiers (max {MAX_IDENTIFIERS})", field="subjectIdentifiers")
    if any(len(i) > MAX_IDENTIFIER_CHARS for i in request.subject_identifiers):
        raise InvalidRequest(f"subject identifier too long (max {MAX_IDENTIFIER_CHARS} chars)", field="subjectIdentifiers")
    if request.content and len(request.content) > MAX_CONTENT_CHARS:
        raise InvalidRequest(f"content too long (max {MAX_CONTENT_CHARS:,} characters)", field="content")
    if request.asset_symbol and not ASSET_SYMBOL_RE.match(request.asset_symbol):
        raise InvalidRequest("asset symbol is malformed", field="assetSymbol")


@dataclass
class PipelineResult:
    """admission is None for an idempotent replay, which consumes no quota."""

    result: AggregateResult
    admission: Admission | None
    replayed: bool = False


class RiskPipeline:
    def __init__(
        self,
        limiter: RateLimiter,
        aggregator: Aggregator,
        *,
        default_endpoint: str = ENDPOINT_GROUP_ANALYSIS,
    ) -> None:
        self.limiter = limiter
        self.aggregator = aggregator
        self.default_endpoint = default_endpoint

    async def run(
        self,
        request: AnalysisRequest,
        *,
        subject_key: str | None = None,
        endpoint: str | None = None,
    ) -> PipelineResult:
        """Raises InvalidRequest (incl. IdempotencyConflict), QuotaExceeded or AggregationFailed."""
        validate_request(request)
        endpoint = endpoint or self.default_endpoint
        subject = subject_key or request.subject_key()

        with request_context(request.request_id, endpoint=endpoint, tier=request.tier.value):
            replay = self.aggregator.cached(request, owner=subject)
            if replay is not None:
                logger.info("request_replayed", analysis_id=replay.analysis_id)
                return PipelineResult(result=replay, admission=None, replayed=True)

            admission = await asyncio.to_thread(self.limiter.admit, subject, endpoint, request.tier.value)
            admission.raise_if_denied()
            if admission.degraded:
                logger.warning("admitted_without_quota_enforcement")

            result = await self.aggregator.analyze(request, owner=subject)
            return PipelineResult(result=result, admission=admission)

    def usage(self, subject_key: str, tier: str) -> dict:
        return self.limiter.usage(subject_key, tier)
