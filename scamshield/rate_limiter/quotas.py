"""
Static quota table: (tier, endpoint) -> (max_requests, window_seconds).

Fixed configuration, not computed. Can be replaced wholesale from a JSON file
of the form {"free": {"single-check": {"max_requests": 3, "window_seconds": 3600}}}.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from scamshield.shield_logging import get_logger

logger = get_logger(__name__)

HOUR_SEC = 60 * 60
DAY_SEC = 24 * HOUR_SEC

ENDPOINT_SINGLE_CHECK = "single-check"
ENDPOINT_GROUP_ANALYSIS = "group-analysis"
ENDPOINT_AI_LANGUAGE_ANALYSIS = "ai-language-analysis"

DEFAULT_TIER = "free"


@dataclass(frozen=True)
class QuotaRule:
    max_requests: int
    window_seconds: int

    def window_start(self, now: float) -> int:
        """Quantize now to the start of its fixed window."""
        return int(now // self.window_seconds) * self.window_seconds


# Applied to endpoints missing from a tier's table
DEFAULT_QUOTA = QuotaRule(5, HOUR_SEC)

DEFAULT_RATE_LIMITS: dict[str, dict[str, QuotaRule]] = {
    "free": {
        ENDPOINT_SINGLE_CHECK: QuotaRule(3, HOUR_SEC),
        ENDPOINT_GROUP_ANALYSIS: QuotaRule(1, DAY_SEC),
        ENDPOINT_AI_LANGUAGE_ANALYSIS: QuotaRule(2, HOUR_SEC),
    },
    "basic": {
        ENDPOINT_SINGLE_CHECK: QuotaRule(20, HOUR_SEC),
        ENDPOINT_GROUP_ANALYSIS: QuotaRule(5, DAY_SEC),
        ENDPOINT_AI_LANGUAGE_ANALYSIS: QuotaRule(15, HOUR_SEC),
    },
    "premium": {
        ENDPOINT_SINGLE_CHECK: QuotaRule(100, HOUR_SEC),
        ENDPOINT_GROUP_ANALYSIS: QuotaRule(20, DAY_SEC),
        ENDPOINT_AI_LANGUAGE_ANALYSIS: QuotaRule(50, HOUR_SEC),
    },
    "pro": {
        ENDPOINT_SINGLE_CHECK: QuotaRule(1000, HOUR_SEC),
        ENDPOINT_GROUP_ANALYSIS: QuotaRule(100, DAY_SEC),
        ENDPOINT_AI_LANGUAGE_ANALYSIS: QuotaRule(200, HOUR_SEC),
    },
}


def load_quota_table(raw: Any) -> dict[str, dict[str, QuotaRule]]:
    """Parse a JSON quota table; falls back to DEFAULT_RATE_LIMITS when raw is empty or invalid."""
    if not isinstance(raw, dict) or not raw:
        return {tier: dict(rules) for tier, rules in DEFAULT_RATE_LIMITS.items()}
    table: dict[str, dict[str, QuotaRule]] = {}
    for tier, endpoints in raw.items():
        if not isinstance(endpoints, dict):
            continue
        rules: dict[str, QuotaRule] = {}
        for endpoint, spec in endpoints.items():
            try:
                rule = QuotaRule(int(spec["max_requests"]), int(spec["window_seconds"]))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("quota_table_entry_invalid", tier=tier, endpoint=endpoint, error=str(e))
                continue
            if rule.window_seconds <= 0:
                logger.warning("quota_table_entry_invalid", tier=tier, endpoint=endpoint, error="window_seconds <= 0")
                continue
            rules[endpoint] = rule
        table[str(tier).lower()] = rules
    if DEFAULT_TIER not in table:
        table[DEFAULT_TIER] = dict(DEFAULT_RATE_LIMITS[DEFAULT_TIER])
    return table


def format_time_until_reset(reset_at: float, now: float) -> str:
    """Human-readable wait: 'Available now', '42m', '3h 5m', '1d 2h'."""
    diff = reset_at - now
    if diff <= 0:
        return "Available now"
    minutes = int(diff // 60)
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{max(1, minutes)}m"
