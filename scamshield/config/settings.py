"""
Application settings.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Provide defaults for every tunable: per-analyzer timeout and cache TTL,
  AI-model trust weights and endpoints, risk thresholds, request timeout,
  quota table, database URL.
- Expose one cached Settings object via get_settings(); tests build their own.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field

from scamshield.config.env import (
    env_float,
    env_int,
    env_json_file,
    env_str,
    load_scamshield_env,
)
from scamshield.core.models import RiskThresholds
from scamshield.rate_limiter.quotas import DEFAULT_RATE_LIMITS, QuotaRule, load_quota_table
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

ANALYZER_SCAMMER_IDENTITY = "scammer-identity"
ANALYZER_LANGUAGE_PATTERN = "language-pattern"
ANALYZER_PRICE_MANIPULATION = "price-manipulation"
ANALYZER_ASSET_VERIFICATION = "asset-verification"
ANALYZER_AI_MODEL = "ai-model"

MINUTE = 60
HOUR = 60 * MINUTE

DEFAULT_ANALYZER_TIMEOUT_SEC = 15.0
DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
# Extra time an analyzer gets beyond its lookup timeout to produce a fallback
DEFAULT_FALLBACK_GRACE_SEC = 2.0
DEFAULT_AGGREGATE_TTL_SEC = 24 * HOUR
DEFAULT_STALE_TTL_SEC = 6 * HOUR
DEFAULT_CACHE_MAX_ENTRIES = 1000
DEFAULT_QUOTA_RETENTION_SEC = 7 * 24 * HOUR

DEFAULT_CACHE_TTLS = {
    ANALYZER_SCAMMER_IDENTITY: 1 * HOUR,
    ANALYZER_LANGUAGE_PATTERN: 30 * MINUTE,
    ANALYZER_PRICE_MANIPULATION: 15 * MINUTE,
    ANALYZER_ASSET_VERIFICATION: 1 * HOUR,
    ANALYZER_AI_MODEL: 5 * MINUTE,
}

DEFAULT_MODEL_WEIGHTS = {"gpt4": 0.4, "claude": 0.4, "custom_ml": 0.2}
DEFAULT_MODEL_TIMEOUT_SEC = 10.0

DEFAULT_COINGECKO_URL = "https://api.coingecko.com/api/v3"


@dataclass
class AnalyzerConfig:
    """Per-analyzer deadline, cache TTL and optional external endpoint."""

    timeout_sec: float = DEFAULT_ANALYZER_TIMEOUT_SEC
    cache_ttl_sec: float = 1 * HOUR
    endpoint: str = ""
    api_key: str = ""

    def __post_init__(self) -> None:
        self.timeout_sec = max(0.01, float(self.timeout_sec))
        self.cache_ttl_sec = max(0.0, float(self.cache_ttl_sec))


@dataclass
class ModelConfig:
    """One AI sub-model backend of the ensemble."""

    name: str
    weight: float
    endpoint: str = ""
    api_key: str = ""
    timeout_sec: float = DEFAULT_MODEL_TIMEOUT_SEC


@dataclass
class EnsembleConfig:
    """
    Trust weights and risk-level policy for the AI ensemble.

    Weights are normalized to sum to 1.0 across configured models; at combine
    time they are renormalized again over the models that actually responded.
    """

    models: list[ModelConfig] = field(default_factory=list)
    safe_below: float = 0.3
    suspicious_below: float = 0.7
    likely_below: float = 0.8
    fallback_confidence: float = 0.1
    # Spread (max - min confidence) under this counts as agreement in the audit note
    agreement_spread: float = 0.2

    def __post_init__(self) -> None:
        if not self.models:
            self.models = [ModelConfig(name=n, weight=w) for n, w in DEFAULT_MODEL_WEIGHTS.items()]
        total = sum(max(0.0, m.weight) for m in self.models)
        if total > 0:
            for m in self.models:
                m.weight = max(0.0, m.weight) / total

    @property
    def weights(self) -> dict[str, float]:
        return {m.name: m.weight for m in self.models}


@dataclass
class Settings:
    """All runtime configuration consumed at startup."""

    database_url: str = "sqlite:///scamshield.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC
    fallback_grace_sec: float = DEFAULT_FALLBACK_GRACE_SEC
    aggregate_ttl_sec: float = DEFAULT_AGGREGATE_TTL_SEC
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    stale_ttl_sec: float = DEFAULT_STALE_TTL_SEC
    quota_retention_sec: float = DEFAULT_QUOTA_RETENTION_SEC
    default_endpoint: str = "group-analysis"
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    # Ensemble "confirmed_scam" consensus lifts the overall score to at least this
    consensus_floor: int = 70
    rate_limits: dict[str, dict[str, QuotaRule]] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    analyzers: dict[str, AnalyzerConfig] = field(default_factory=dict)
    ensemble: EnsembleConfig = field(default_factory=EnsembleConfig)
    scammer_list_path: str = ""
    coingecko_url: str = DEFAULT_COINGECKO_URL

    def __post_init__(self) -> None:
        self.request_timeout_sec = max(0.05, float(self.request_timeout_sec))
        self.fallback_grace_sec = max(0.0, float(self.fallback_grace_sec))
        for name, ttl in DEFAULT_CACHE_TTLS.items():
            self.analyzers.setdefault(name, AnalyzerConfig(cache_ttl_sec=ttl))

    def analyzer(self, name: str) -> AnalyzerConfig:
        return self.analyzers.setdefault(name, AnalyzerConfig())


def _analyzer_from_env(name: str) -> AnalyzerConfig:
    prefix = "SCAMSHIELD_" + name.upper().replace("-", "_")
    return AnalyzerConfig(
        timeout_sec=env_float(f"{prefix}_TIMEOUT_SEC", DEFAULT_ANALYZER_TIMEOUT_SEC),
        cache_ttl_sec=env_float(f"{prefix}_CACHE_TTL_SEC", DEFAULT_CACHE_TTLS[name]),
        endpoint=env_str(f"{prefix}_URL"),
        api_key=env_str(f"{prefix}_API_KEY"),
    )


def _ensemble_from_env() -> EnsembleConfig:
    """
    Models come from SCAMSHIELD_MODELS_PATH (JSON list of {name, weight, endpoint, api_key,
    timeout_sec}) or default to gpt4/claude/custom_ml with per-model *_URL / *_API_KEY env vars.
    """
    raw = env_json_file("SCAMSHIELD_MODELS_PATH")
    models: list[ModelConfig] = []
    if isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            models.append(
                ModelConfig(
                    name=str(entry["name"]),
                    weight=float(entry.get("weight", 0.0)),
                    endpoint=str(entry.get("endpoint") or ""),
                    api_key=str(entry.get("api_key") or ""),
                    timeout_sec=float(entry.get("timeout_sec", DEFAULT_MODEL_TIMEOUT_SEC)),
                )
            )
    if not models:
        for name, weight in DEFAULT_MODEL_WEIGHTS.items():
            prefix = f"SCAMSHIELD_MODEL_{name.upper()}"
            models.append(
                ModelConfig(
                    name=name,
                    weight=env_float(f"{prefix}_WEIGHT", weight),
                    endpoint=env_str(f"{prefix}_URL"),
                    api_key=env_str(f"{prefix}_API_KEY"),
                    timeout_sec=env_float(f"{prefix}_TIMEOUT_SEC", DEFAULT_MODEL_TIMEOUT_SEC),
                )
            )
    return EnsembleConfig(models=models)


def load_settings() -> Settings:
    """Build Settings from environment (after loading .env)."""
    load_scamshield_env()
    rate_limits = load_quota_table(env_json_file("SCAMSHIELD_RATE_LIMITS_PATH"))
    settings = Settings(
        database_url=env_str("DATABASE_URL", "sqlite:///" + env_str("SCAMSHIELD_DB_PATH", "scamshield.db")),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 8000),
        request_timeout_sec=env_float("SCAMSHIELD_REQUEST_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC),
        fallback_grace_sec=env_float("SCAMSHIELD_FALLBACK_GRACE_SEC", DEFAULT_FALLBACK_GRACE_SEC),
        aggregate_ttl_sec=env_float("SCAMSHIELD_AGGREGATE_TTL_SEC", DEFAULT_AGGREGATE_TTL_SEC),
        cache_max_entries=env_int("SCAMSHIELD_CACHE_MAX_ENTRIES", DEFAULT_CACHE_MAX_ENTRIES),
        stale_ttl_sec=env_float("SCAMSHIELD_STALE_TTL_SEC", DEFAULT_STALE_TTL_SEC),
        quota_retention_sec=env_float("SCAMSHIELD_QUOTA_RETENTION_SEC", DEFAULT_QUOTA_RETENTION_SEC),
        thresholds=RiskThresholds(
            warning_from=env_int("SCAMSHIELD_WARNING_FROM", 30),
            danger_from=env_int("SCAMSHIELD_DANGER_FROM", 70),
        ),
        consensus_floor=env_int("SCAMSHIELD_CONSENSUS_FLOOR", 70),
        rate_limits=rate_limits,
        analyzers={name: _analyzer_from_env(name) for name in DEFAULT_CACHE_TTLS},
        ensemble=_ensemble_from_env(),
        scammer_list_path=env_str("SCAMSHIELD_SCAMMER_LIST_PATH"),
        coingecko_url=env_str("COINGECKO_API_URL", DEFAULT_COINGECKO_URL),
    )
    logger.info(
        "settings_loaded",
        database=settings.database_url.split("?")[0].split("//")[-1],
        request_timeout_sec=settings.request_timeout_sec,
        tiers=sorted(settings.rate_limits),
        models=[m.name for m in settings.ensemble.models],
    )
    return settings


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (loaded once)."""
    return load_settings()
