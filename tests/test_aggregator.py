"""
Tests for the aggregator: merge arithmetic, thresholds, idempotent replay,
partial and total failure, global deadline, ordering and cancellation.
"""

from __future__ import annotations

import asyncio

import pytest

from scamshield.aggregator import AggregationState, Aggregator
from scamshield.core.exceptions import AggregationFailed, IdempotencyConflict
from scamshield.core.models import RiskLevel, RiskThresholds


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize(
    "score,level",
    [
        (0, RiskLevel.SAFE),
        (29, RiskLevel.SAFE),
        (30, RiskLevel.WARNING),
        (69, RiskLevel.WARNING),
        (70, RiskLevel.DANGER),
        (100, RiskLevel.DANGER),
    ],
)
def test_level_thresholds_are_exact(fake_analyzer, make_request, score, level):
    agg = Aggregator([fake_analyzer("a", score)])
    result = run(agg.analyze(make_request()))
    assert result.overall_risk_score == score
    assert result.risk_level == level


def test_custom_thresholds():
    t = RiskThresholds(warning_from=10, danger_from=50)
    assert t.level_for(9) == RiskLevel.SAFE
    assert t.level_for(10) == RiskLevel.WARNING
    assert t.level_for(50) == RiskLevel.DANGER


def test_overall_is_rounded_mean_within_bounds(fake_analyzer, make_request):
    agg = Aggregator([fake_analyzer("a", 10, confidence=0.9), fake_analyzer("b", 45, confidence=0.5), fake_analyzer("c", 100, confidence=0.4)])
    result = run(agg.analyze(make_request()))
    assert result.overall_risk_score == round((10 + 45 + 100) / 3)
    assert 0 <= result.overall_risk_score <= 100
    assert isinstance(result.overall_risk_score, int)
    assert result.confidence == pytest.approx(0.6)
    assert result.sources == ["a", "b", "c"]


def test_idempotent_replay_is_byte_identical(fake_analyzer, make_request, cache):
    """Same request_id twice: identical JSON, analyzers dispatched once."""
    a, b = fake_analyzer("a", 20), fake_analyzer("b", 60)
    agg = Aggregator([a, b], cache)
    first = run(agg.analyze(make_request("idem-1")))
    second = run(agg.analyze(make_request("idem-1")))
    assert first.to_json() == second.to_json()
    assert first.analysis_id == second.analysis_id
    assert (a.calls, b.calls) == (1, 1)

    run(agg.analyze(make_request("idem-2")))
    assert (a.calls, b.calls) == (2, 2)


def test_replay_expires_with_ttl(fake_analyzer, make_request, cache, clock):
    a = fake_analyzer("a", 20)
    agg = Aggregator([a], cache, aggregate_ttl=60)
    run(agg.analyze(make_request("idem")))
    clock.advance(61)
    run(agg.analyze(make_request("idem")))
    assert a.calls == 2


def test_timed_out_analyzer_is_dropped(fake_analyzer, make_request):
    """An analyzer past its own deadline without a fallback contributes nothing."""
    agg = Aggregator(
        [fake_analyzer("a", 40), fake_analyzer("slow", 90, delay=1.0, timeout=0.05), fake_analyzer("b", 60)],
        fallback_grace=0.0,
    )
    result = run(agg.analyze(make_request()))
    assert result.sources == ["a", "b"]
    assert result.overall_risk_score == 50
    assert any(c.startswith("slow: unavailable") for c in result.caveats)


def test_raising_analyzer_is_dropped(fake_analyzer, make_request):
    agg = Aggregator([fake_analyzer("a", 40), fake_analyzer("bad", error=RuntimeError("boom"))])
    result = run(agg.analyze(make_request()))
    assert result.sources == ["a"]
    assert result.overall_risk_score == 40


def test_total_failure_raises(fake_analyzer, make_request):
    states = []
    agg = Aggregator(
        [fake_analyzer("a", error=RuntimeError("x")), fake_analyzer("b", error=ValueError("y"))],
        on_state=lambda rid, s: states.append(s),
    )
    with pytest.raises(AggregationFailed) as exc_info:
        run(agg.analyze(make_request()))
    assert exc_info.value.retryable
    assert exc_info.value.status_code == 503
    assert states[-1] == AggregationState.FAILED


def test_state_sequence(fake_analyzer, make_request):
    states = []
    agg = Aggregator([fake_analyzer("a", 10)], on_state=lambda rid, s: states.append(s))
    run(agg.analyze(make_request()))
    assert states == [
        AggregationState.CREATED,
        AggregationState.DISPATCHING,
        AggregationState.COLLECTING,
        AggregationState.MERGING,
        AggregationState.DONE,
    ]


def test_global_deadline_uses_fallback(fake_analyzer, make_request):
    """Pending at the request deadline: cancelled, replaced by its degraded result when it has one."""
    hung_with_fallback = fake_analyzer("hung", 90, delay=5.0, fallback_score=40)
    hung_without = fake_analyzer("mute", 90, delay=5.0)
    agg = Aggregator([fake_analyzer("a", 20), hung_with_fallback, hung_without], request_timeout=0.1)
    result = run(agg.analyze(make_request()))
    assert result.sources == ["a", "hung"]
    assert result.overall_risk_score == 30
    assert result.vectors[1].degraded
    assert result.degraded
    assert hung_with_fallback.cancelled and hung_without.cancelled


def test_vectors_follow_dispatch_order(fake_analyzer, make_request):
    agg = Aggregator([fake_analyzer("first", 10, delay=0.05), fake_analyzer("second", 20), fake_analyzer("third", 30, delay=0.02)])
    result = run(agg.analyze(make_request()))
    assert [v.source for v in result.vectors] == ["first", "second", "third"]


def test_asset_analyzers_skipped_without_symbol(fake_analyzer, make_request):
    price = fake_analyzer("price", 90, needs_asset=True)
    agg = Aggregator([fake_analyzer("a", 20), price])
    result = run(agg.analyze(make_request()))
    assert result.sources == ["a"]
    assert price.calls == 0
    assert result.caveats == []

    with_asset = run(agg.analyze(make_request("r2", asset_symbol="PEPE")))
    assert with_asset.sources == ["a", "price"]


def test_confirmed_consensus_lifts_overall_to_danger(fake_analyzer, make_request):
    agg = Aggregator([fake_analyzer("ai", 40, details={"consensus_override": True}), fake_analyzer("b", 10)])
    result = run(agg.analyze(make_request()))
    assert result.overall_risk_score == 70
    assert result.risk_level == RiskLevel.DANGER


def test_consensus_flag_absent_keeps_mean(fake_analyzer, make_request):
    agg = Aggregator([fake_analyzer("ai", 40, details={"consensus_override": False}), fake_analyzer("b", 10)])
    assert run(agg.analyze(make_request())).overall_risk_score == 25


def test_caller_cancellation_reaches_analyzers(fake_analyzer, make_request):
    slow = [fake_analyzer("a", delay=5.0), fake_analyzer("b", delay=5.0)]
    agg = Aggregator(slow)

    async def scenario():
        task = asyncio.create_task(agg.analyze(make_request()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(scenario())
    assert all(a.cancelled for a in slow)


def test_result_round_trips_through_json(fake_analyzer, make_request, cache):
    from scamshield.core.models import AggregateResult

    agg = Aggregator([fake_analyzer("a", 55)], cache)
    result = run(agg.analyze(make_request()))
    again = AggregateResult.from_json(result.to_json())
    assert again.to_json() == result.to_json()
    assert result.to_dict()["risk_level"] == "warning"


def test_reused_key_with_other_payload_is_rejected(fake_analyzer, make_request, cache):
    """An idempotency key answers only the payload it was first used for."""
    a = fake_analyzer("a", 20)
    agg = Aggregator([a], cache)
    first = run(agg.analyze(make_request("shared", subject_identifiers=("alice",))))
    assert first.request_id == "shared"

    with pytest.raises(IdempotencyConflict) as exc_info:
        run(agg.analyze(make_request("shared", subject_identifiers=("mallory", "eve"), content="other")))
    assert exc_info.value.status_code == 409
    assert a.calls == 1

    # Identifier case does not change the payload
    again = run(agg.analyze(make_request("shared", subject_identifiers=("ALICE",))))
    assert again.to_json() == first.to_json()


def test_reused_key_by_other_owner_is_rejected(fake_analyzer, make_request, cache):
    agg = Aggregator([fake_analyzer("a", 20)], cache)
    run(agg.analyze(make_request("k"), owner="user:u1"))
    assert agg.cached(make_request("k"), owner="user:u1") is not None
    with pytest.raises(IdempotencyConflict):
        agg.cached(make_request("k"), owner="user:u2")
