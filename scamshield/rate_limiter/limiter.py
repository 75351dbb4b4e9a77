"""
Tier-aware fixed-window rate limiter.

Admission quantizes now to the (tier, endpoint) window, then asks the quota
store to atomically increment-if-below-max. Denials return immediately with the
window reset time and a human-readable wait; nothing is queued.

Windows are fixed, not sliding: a client can spend its full quota at the end of
one window and again at the start of the next, so up to 2 x max requests may
land within one window-length span around a boundary. This is accepted.

If the quota store is unreachable the request is admitted (fail-open) and the
admission is flagged degraded.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from scamshield.core.exceptions import QuotaExceeded
from scamshield.quota.store import QuotaKey, QuotaStore
from scamshield.rate_limiter.quotas import (
    DEFAULT_QUOTA,
    DEFAULT_RATE_LIMITS,
    DEFAULT_TIER,
    QuotaRule,
    format_time_until_reset,
)
from scamshield.shield_logging import get_logger

logger = get_logger(__name__)


@dataclass
class Admission:
    """Outcome of one admission check."""

    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    reason: str | None = None
    retry_after: str | None = None
    degraded: bool = False

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise QuotaExceeded(
                self.reason or "Rate limit exceeded",
                reset_at=self.reset_at,
                retry_after=self.retry_after or "",
                limit=self.limit,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "limit": self.limit,
            "reason": self.reason,
            "retry_after": self.retry_after,
            "degraded": self.degraded,
        }


class RateLimiter:
    """Gate in front of the aggregator. Holds no counters itself; all state is in the store."""

    def __init__(
        self,
        store: QuotaStore,
        rate_limits: dict[str, dict[str, QuotaRule]] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.rate_limits = rate_limits or DEFAULT_RATE_LIMITS
        self._clock = clock

    def rule_for(self, tier: str, endpoint: str) -> QuotaRule:
        tier_rules = self.rate_limits.get((tier or "").lower()) or self.rate_limits.get(DEFAULT_TIER) or {}
        return tier_rules.get(endpoint, DEFAULT_QUOTA)

    def admit(self, subject_key: str, endpoint: str, tier: str) -> Admission:
        """Consume one request from the (subject, endpoint, tier) quota if any is left."""
        rule = self.rule_for(tier, endpoint)
        now = self._clock()
        window_start = rule.window_start(now)
        reset_at = float(window_start + rule.window_seconds)
        key = QuotaKey(subject=subject_key, endpoint=endpoint, tier=(tier or DEFAULT_TIER).lower())

        try:
            allowed, count = self.store.get_and_increment(key, window_start, rule.max_requests)
        except Exception as e:
            logger.warning(
                "rate_limit_store_unavailable",
                subject=subject_key[:16],
                endpoint=endpoint,
                tier=key.tier,
                error=str(e),
            )
            return Admission(
                allowed=True,
                remaining=max(0, rule.max_requests - 1),
                reset_at=reset_at,
                limit=rule.max_requests,
                reason="Quota store unavailable; request admitted without enforcement",
                degraded=True,
            )

        if not allowed:
            wait = format_time_until_reset(reset_at, now)
            logger.info(
                "rate_limit_denied",
                subject=subject_key[:16],
                endpoint=endpoint,
                tier=key.tier,
                count=count,
                limit=rule.max_requests,
                reset_at=reset_at,
            )
            return Admission(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                limit=rule.max_requests,
                reason=(
                    f"Rate limit exceeded: {rule.max_requests} {endpoint} requests per "
                    f"{_window_label(rule.window_seconds)} on the {key.tier} tier. "
                    f"Please wait {wait} before trying again."
                ),
                retry_after=wait,
            )

        logger.debug(
            "rate_limit_admitted",
            subject=subject_key[:16],
            endpoint=endpoint,
            tier=key.tier,
            count=count,
            limit=rule.max_requests,
        )
        return Admission(
            allowed=True,
            remaining=max(0, rule.max_requests - count),
            reset_at=reset_at,
            limit=rule.max_requests,
        )

    def usage(self, subject_key: str, tier: str) -> dict[str, dict[str, Any]]:
        """
        Current-window usage for every endpoint configured on the tier.

        Read-only; returns {endpoint: {used, limit, remaining, reset_at}}. Endpoints
        whose store read fails report used=None.
        """
        tier = (tier or DEFAULT_TIER).lower()
        rules = self.rate_limits.get(tier) or self.rate_limits.get(DEFAULT_TIER) or {}
        now = self._clock()
        out: dict[str, dict[str, Any]] = {}
        for endpoint, rule in sorted(rules.items()):
            window_start = rule.window_start(now)
            key = QuotaKey(subject=subject_key, endpoint=endpoint, tier=tier)
            try:
                used: int | None = self.store.get_usage(key, (window_start, window_start + rule.window_seconds))
            except Exception as e:
                logger.warning("rate_limit_usage_unavailable", endpoint=endpoint, error=str(e))
                used = None
            out[endpoint] = {
                "used": used,
                "limit": rule.max_requests,
                "remaining": None if used is None else max(0, rule.max_requests - used),
                "reset_at": float(window_start + rule.window_seconds),
            }
        return out


def _window_label(seconds: int) -> str:
    if seconds % 86400 == 0:
        days = seconds // 86400
        return "day" if days == 1 else f"{days} days"
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, seconds // 60)
    return "minute" if minutes == 1 else f"{minutes} minutes"
