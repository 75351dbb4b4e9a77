"""
Aggregator: concurrent fan-out over analyzers, merge, idempotent replay.
"""

from scamshield.aggregator.aggregator import AggregationState, Aggregator
from scamshield.aggregator.pipeline import PipelineResult, RiskPipeline, validate_request

__all__ = [
    "AggregationState",
    "Aggregator",
    "PipelineResult",
    "RiskPipeline",
    "validate_request",
]
