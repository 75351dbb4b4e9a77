"""
Rate limiter: fixed-window, tier-aware admission in front of the aggregator.
"""

from scamshield.rate_limiter.limiter import Admission, RateLimiter
from scamshield.rate_limiter.quotas import (
    DEFAULT_RATE_LIMITS,
    QuotaRule,
    format_time_until_reset,
    load_quota_table,
)

__all__ = [
    "Admission",
    "DEFAULT_RATE_LIMITS",
    "QuotaRule",
    "RateLimiter",
    "format_time_until_reset",
    "load_quota_table",
]
