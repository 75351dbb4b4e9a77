"""
Tests for env-driven settings and the default analyzer registry.
"""

from __future__ import annotations

import json

import pytest

from scamshield.config import EnsembleConfig, ModelConfig, Settings, load_settings
from scamshield.config.settings import DEFAULT_CACHE_TTLS
from scamshield.rate_limiter import QuotaRule


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "SCAMSHIELD_MODELS_PATH", "SCAMSHIELD_RATE_LIMITS_PATH", "SCAMSHIELD_SCAMMER_LIST_PATH"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    s = Settings()
    assert s.request_timeout_sec == 30.0
    assert s.thresholds.warning_from == 30 and s.thresholds.danger_from == 70
    assert s.analyzer("price-manipulation").cache_ttl_sec == 15 * 60
    assert s.analyzer("ai-model").cache_ttl_sec == 5 * 60
    assert s.analyzer("language-pattern").timeout_sec == 15.0
    assert s.ensemble.weights == pytest.approx({"gpt4": 0.4, "claude": 0.4, "custom_ml": 0.2})


def test_ensemble_weights_normalized():
    cfg = EnsembleConfig(models=[ModelConfig("a", 2.0), ModelConfig("b", 6.0)])
    assert cfg.weights == pytest.approx({"a": 0.25, "b": 0.75})


def test_load_settings_from_env(clean_env, tmp_path):
    limits = tmp_path / "limits.json"
    limits.write_text(json.dumps({"free": {"single-check": {"max_requests": 9, "window_seconds": 60}}}))
    models = tmp_path / "models.json"
    models.write_text(json.dumps([{"name": "local-llm", "weight": 1, "endpoint": "http://llm.test"}]))

    clean_env.setenv("SCAMSHIELD_RATE_LIMITS_PATH", str(limits))
    clean_env.setenv("SCAMSHIELD_MODELS_PATH", str(models))
    clean_env.setenv("SCAMSHIELD_REQUEST_TIMEOUT_SEC", "12.5")
    clean_env.setenv("SCAMSHIELD_PRICE_MANIPULATION_CACHE_TTL_SEC", "120")
    clean_env.setenv("SCAMSHIELD_LANGUAGE_PATTERN_URL", "http://lang.test")
    clean_env.setenv("SCAMSHIELD_DB_PATH", str(tmp_path / "q.db"))
    clean_env.setenv("SCAMSHIELD_DANGER_FROM", "80")

    s = load_settings()
    assert s.rate_limits["free"]["single-check"] == QuotaRule(9, 60)
    assert [m.name for m in s.ensemble.models] == ["local-llm"]
    assert s.ensemble.weights == {"local-llm": 1.0}
    assert s.request_timeout_sec == 12.5
    assert s.analyzer("price-manipulation").cache_ttl_sec == 120
    assert s.analyzer("language-pattern").endpoint == "http://lang.test"
    assert s.database_url == "sqlite:///" + str(tmp_path / "q.db")
    assert s.thresholds.danger_from == 80


def test_malformed_env_values_fall_back(clean_env):
    clean_env.setenv("SCAMSHIELD_REQUEST_TIMEOUT_SEC", "soon")
    clean_env.setenv("SCAMSHIELD_MODELS_PATH", "/nonexistent/models.json")
    s = load_settings()
    assert s.request_timeout_sec == 30.0
    assert [m.name for m in s.ensemble.models] == ["gpt4", "claude", "custom_ml"]


def test_default_registry_order():
    from scamshield.analyzers import build_default_analyzers

    analyzers = build_default_analyzers(Settings(), cache=None)
    assert [a.name for a in analyzers] == [
        "scammer-identity",
        "language-pattern",
        "ai-model",
        "price-manipulation",
        "asset-verification",
    ]
    assert {a.name: a.cache_ttl for a in analyzers} == DEFAULT_CACHE_TTLS
