"""
AI model ensemble: concurrent sub-model calls folded into one weighted verdict.
"""

from scamshield.ensemble.backends import HttpModelBackend, ModelBackend, ModelVerdict, build_backends
from scamshield.ensemble.combiner import EnsembleCombiner, EnsembleResult, EnsembleRiskLevel

__all__ = [
    "EnsembleCombiner",
    "EnsembleResult",
    "EnsembleRiskLevel",
    "HttpModelBackend",
    "ModelBackend",
    "ModelVerdict",
    "build_backends",
]
