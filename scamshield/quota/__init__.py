"""
Quota store: durable per-window request counters for the rate limiter.

MemoryQuotaStore for tests and single-process use; SqlQuotaStore for a shared
database (SQLite by default, PostgreSQL via DATABASE_URL).
"""

from scamshield.quota.sql_store import RateLimitWindow, SqlQuotaStore
from scamshield.quota.store import MemoryQuotaStore, QuotaKey, QuotaStore, QuotaWindow

__all__ = [
    "MemoryQuotaStore",
    "QuotaKey",
    "QuotaStore",
    "QuotaWindow",
    "RateLimitWindow",
    "SqlQuotaStore",
]
