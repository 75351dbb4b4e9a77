"""
Tests for the quota stores (in-memory and SQLAlchemy/SQLite).
"""

from __future__ import annotations

import threading

import pytest

from scamshield.quota import QuotaKey

KEY = QuotaKey(subject="user:alice", endpoint="single-check", tier="free")
WINDOW = 1_699_999_200


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


def test_increment_until_max(store):
    """Counts go 1..max, then further calls are refused without incrementing."""
    assert store.get_and_increment(KEY, WINDOW, 3) == (True, 1)
    assert store.get_and_increment(KEY, WINDOW, 3) == (True, 2)
    assert store.get_and_increment(KEY, WINDOW, 3) == (True, 3)
    assert store.get_and_increment(KEY, WINDOW, 3) == (False, 3)
    assert store.get_and_increment(KEY, WINDOW, 3) == (False, 3)
    assert store.get_usage(KEY, (WINDOW, WINDOW + 3600)) == 3


def test_windows_and_keys_are_independent(store):
    """A new window, endpoint or tier starts from zero."""
    store.get_and_increment(KEY, WINDOW, 1)
    assert store.get_and_increment(KEY, WINDOW, 1) == (False, 1)
    assert store.get_and_increment(KEY, WINDOW + 3600, 1) == (True, 1)
    other_endpoint = QuotaKey(subject=KEY.subject, endpoint="group-analysis", tier="free")
    assert store.get_and_increment(other_endpoint, WINDOW, 1) == (True, 1)
    other_tier = QuotaKey(subject=KEY.subject, endpoint=KEY.endpoint, tier="pro")
    assert store.get_and_increment(other_tier, WINDOW, 1) == (True, 1)


def test_usage_is_read_only_and_ranged(store):
    store.get_and_increment(KEY, WINDOW, 5)
    store.get_and_increment(KEY, WINDOW + 3600, 5)
    assert store.get_usage(KEY, (WINDOW, WINDOW + 3600)) == 1
    assert store.get_usage(KEY, (WINDOW, WINDOW + 7200)) == 2
    assert store.get_usage(KEY, (WINDOW, WINDOW + 3600)) == 1
    assert store.get_usage(QuotaKey("nobody", "single-check", "free"), (0, WINDOW * 2)) == 0


def test_purge_before(store):
    """Windows older than the cutoff are removed; newer ones survive."""
    store.get_and_increment(KEY, WINDOW, 5)
    store.get_and_increment(KEY, WINDOW + 7200, 5)
    assert store.purge_before(WINDOW + 3600) == 1
    assert store.get_usage(KEY, (0, WINDOW * 2)) == 1


def test_zero_max_never_admits(store):
    assert store.get_and_increment(KEY, WINDOW, 0) == (False, 0)


def test_concurrent_increments_never_exceed_max(memory_store):
    """Parallel admissions against one window admit exactly max."""
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        allowed, _ = memory_store.get_and_increment(KEY, WINDOW, 10)
        with lock:
            results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(40)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(True) == 10
    assert memory_store.get_usage(KEY, (WINDOW, WINDOW + 1)) == 10


def test_sql_list_windows(sql_store):
    """list_windows returns rows as dicts newest first."""
    sql_store.get_and_increment(KEY, WINDOW, 5)
    sql_store.get_and_increment(KEY, WINDOW + 3600, 5)
    rows = sql_store.list_windows(KEY.subject)
    assert [r["window_start"] for r in rows] == [WINDOW + 3600, WINDOW]
    assert rows[0]["request_count"] == 1
