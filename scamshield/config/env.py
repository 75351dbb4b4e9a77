"""
Environment variable loading for ScamShield.

- Loads .env from project root when available (python-dotenv).
- Typed readers that fall back to defaults on missing or malformed values.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"


def load_scamshield_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("env_invalid_float", name=name, value=raw, default=default)
        return default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("env_invalid_int", name=name, value=raw, default=default)
        return default


def env_json_file(name: str) -> Any | None:
    """Read a JSON document from the path named by env var `name`. None when unset or unreadable."""
    path_str = env_str(name)
    if not path_str:
        return None
    path = Path(path_str)
    if not path.is_file():
        logger.warning("env_json_file_missing", name=name, path=path_str)
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("env_json_file_invalid", name=name, path=path_str, error=str(e))
        return None
