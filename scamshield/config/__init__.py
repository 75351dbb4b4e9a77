"""
Configuration management for ScamShield.

Loads settings from environment variables and the optional .env file and
exposes a single source of truth for quotas, timeouts, TTLs and model weights.
"""

from scamshield.config.settings import (  # noqa: F401
    AnalyzerConfig,
    EnsembleConfig,
    ModelConfig,
    Settings,
    get_settings,
    load_settings,
)

__all__ = [
    "AnalyzerConfig",
    "EnsembleConfig",
    "ModelConfig",
    "Settings",
    "get_settings",
    "load_settings",
]
