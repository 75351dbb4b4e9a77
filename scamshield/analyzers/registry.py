"""
Default analyzer registry. List order is dispatch order, which is also the
order vectors appear in the aggregate result.
"""

from __future__ import annotations

import httpx

from scamshield.analyzers.ai_model import AIModelAnalyzer
from scamshield.analyzers.asset_verification import AssetVerificationAnalyzer
from scamshield.analyzers.base import Analyzer
from scamshield.analyzers.language_pattern import LanguagePatternAnalyzer
from scamshield.analyzers.price_manipulation import PriceManipulationAnalyzer
from scamshield.analyzers.scammer_identity import ScammerIdentityAnalyzer, load_blacklist
from scamshield.cache import Cache
from scamshield.config.settings import (
    ANALYZER_AI_MODEL,
    ANALYZER_ASSET_VERIFICATION,
    ANALYZER_LANGUAGE_PATTERN,
    ANALYZER_PRICE_MANIPULATION,
    ANALYZER_SCAMMER_IDENTITY,
    Settings,
)
from scamshield.ensemble import EnsembleCombiner, build_backends


def build_default_analyzers(
    settings: Settings,
    cache: Cache | None,
    client: httpx.AsyncClient | None = None,
) -> list[Analyzer]:
    identity = settings.analyzer(ANALYZER_SCAMMER_IDENTITY)
    language = settings.analyzer(ANALYZER_LANGUAGE_PATTERN)
    ai = settings.analyzer(ANALYZER_AI_MODEL)
    price = settings.analyzer(ANALYZER_PRICE_MANIPULATION)
    asset = settings.analyzer(ANALYZER_ASSET_VERIFICATION)

    combiner = EnsembleCombiner(build_backends(settings.ensemble.models, client), settings.ensemble)
    return [
        ScammerIdentityAnalyzer(
            cache,
            blacklist=load_blacklist(settings.scammer_list_path),
            endpoint=identity.endpoint,
            api_key=identity.api_key,
            client=client,
            timeout=identity.timeout_sec,
            cache_ttl=identity.cache_ttl_sec,
        ),
        LanguagePatternAnalyzer(
            cache,
            endpoint=language.endpoint,
            api_key=language.api_key,
            client=client,
            timeout=language.timeout_sec,
            cache_ttl=language.cache_ttl_sec,
        ),
        AIModelAnalyzer(
            combiner,
            cache,
            score_ceiling=settings.thresholds.danger_from - 1,
            timeout=ai.timeout_sec,
            cache_ttl=ai.cache_ttl_sec,
        ),
        PriceManipulationAnalyzer(
            cache,
            base_url=price.endpoint or settings.coingecko_url,
            client=client,
            timeout=price.timeout_sec,
            cache_ttl=price.cache_ttl_sec,
        ),
        AssetVerificationAnalyzer(
            cache,
            base_url=asset.endpoint or settings.coingecko_url,
            client=client,
            timeout=asset.timeout_sec,
            cache_ttl=asset.cache_ttl_sec,
        ),
    ]
