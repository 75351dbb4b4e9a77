"""
AI model backends for the ensemble.

Every configured model is an HttpModelBackend pointed at its own endpoint:
POST {content, identifiers, urgency} with a bearer key, expecting
{is_scam, confidence, threat_types, reasoning, recommendations} (camelCase
keys are accepted too). A model with no endpoint raises AnalyzerUnavailable
and simply does not respond.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from scamshield.config.settings import ModelConfig
from scamshield.core.exceptions import AnalyzerUnavailable
from scamshield.core.http_client import bearer, client_scope, request_json
from scamshield.core.models import AnalysisRequest

MAX_CONTENT_CHARS = 10_000


@dataclass
class ModelVerdict:
    """One sub-model's answer."""

    model: str
    is_scam: bool
    confidence: float
    threat_types: list[str] = field(default_factory=list)
    reasoning: str = ""
    recommendations: list[str] = field(default_factory=list)
    latency_ms: float = 0.0

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "is_scam": self.is_scam,
            "confidence": round(self.confidence, 4),
            "threat_types": list(self.threat_types),
            "reasoning": self.reasoning,
            "recommendations": list(self.recommendations),
            "latency_ms": round(self.latency_ms, 2),
        }


class ModelBackend(ABC):
    name: str
    timeout: float

    @abstractmethod
    async def classify(self, request: AnalysisRequest) -> ModelVerdict:
        ...


def parse_verdict(model: str, data: dict[str, Any]) -> ModelVerdict:
    def pick(*keys: str, default: Any = None) -> Any:
        for k in keys:
            if k in data and data[k] is not None:
                return data[k]
        return default

    is_scam = pick("is_scam", "isScam")
    confidence = pick("confidence")
    if is_scam is None or confidence is None:
        raise ValueError(f"{model}: response missing is_scam/confidence")
    return ModelVerdict(
        model=model,
        is_scam=bool(is_scam),
        confidence=float(confidence),
        threat_types=[str(t) for t in pick("threat_types", "threatTypes", default=[])],
        reasoning=str(pick("reasoning", default="")),
        recommendations=[str(r) for r in pick("recommendations", default=[])],
    )


class HttpModelBackend(ModelBackend):
    def __init__(self, config: ModelConfig, client: httpx.AsyncClient | None = None) -> None:
        self.name = config.name
        self.timeout = float(config.timeout_sec)
        self.endpoint = config.endpoint
        self.api_key = config.api_key
        self.client = client

    async def classify(self, request: AnalysisRequest) -> ModelVerdict:
        if not self.endpoint:
            raise AnalyzerUnavailable(f"model {self.name} has no endpoint configured", model=self.name)
        start = time.monotonic()
        payload = {
            "content": (request.content or "")[:MAX_CONTENT_CHARS],
            "identifiers": list(request.subject_identifiers),
            "urgency": request.urgency.value,
        }
        async with client_scope(self.client) as client:
            data = await request_json(
                client,
                "POST",
                self.endpoint,
                json=payload,
                headers=bearer(self.api_key),
                timeout=self.timeout,
                retries=0,
            )
        verdict = parse_verdict(self.name, data or {})
        verdict.latency_ms = (time.monotonic() - start) * 1000
        return verdict


def build_backends(models: list[ModelConfig], client: httpx.AsyncClient | None = None) -> list[ModelBackend]:
    return [HttpModelBackend(m, client) for m in models]
