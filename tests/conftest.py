"""Shared fixtures for the triage test suite."""

import asyncio
import json
from typing import Callable, Dict, List, Optional, Union

import pytest

from scalemap.infrastructure.llm import ILLMClient, ChatCompletionResult
from scalemap.triage.application import TriageAnalyzer, TriageService
from scalemap.triage.application.services import IAuditSink
from scalemap.triage.domain import (
    Assessment, DomainResponse, IndustryClassification, IndustryRuleTable, TriageConfiguration
)
from scalemap.triage.infrastructure import (
    ReasoningEnrichmentClient, TriageMetricsCollector, CircuitBreaker
)


# --- Fake reasoning model ---

ContentSource = Union[str, Callable[[List[dict]], str]]


class FakeLLMClient(ILLMClient):
    """
    Scripted LLM client.

    Each call consumes the next scripted reply; the last one repeats.
    A reply may be a string, a callable taking the messages, or an
    exception instance to raise.
    """

    def __init__(self, *replies, delay: float = 0.0, usage: Optional[tuple] = (120, 60)):
        self.replies = list(replies)
        self.delay = delay
        self.usage = usage
        self.calls: List[dict] = []

    async def chat_completion(
        self,
        messages: List[dict],
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 3000,
        json_response: bool = True,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self.replies[0] if len(self.replies) == 1 else self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply(messages) if callable(reply) else reply

        prompt_tokens, completion_tokens = self.usage if self.usage else (None, None)
        return ChatCompletionResult(
            content=content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=3
        )


def domain_entry(score: float, confidence: float = 0.9, reasoning: str = "Analyst reasoning",
                 factors: Optional[List[str]] = None, severity: str = "high") -> dict:
    return {
        "adjustedScore": score,
        "confidence": confidence,
        "reasoning": reasoning,
        "criticalFactors": factors if factors is not None else [],
        "severity": severity,
    }


def enrichment_json(entries: Dict[str, dict]) -> str:
    return json.dumps({"domainAnalysis": entries})


# --- Audit sink ---

class RecordingAuditSink(IAuditSink):
    """Keeps audit events in memory."""

    def __init__(self):
        self.events: List[tuple] = []

    async def record(self, event, assessment_id, metadata):
        self.events.append((event, assessment_id, metadata))

    @property
    def names(self) -> List[str]:
        return [event for event, _, _ in self.events]


# --- Builders ---

def make_assessment(
    domains: Dict[str, list],
    assessment_id: str = "assess-001",
    sector: Optional[str] = None,
    regulatory_classification: Optional[str] = None,
    question_counts: Optional[Dict[str, int]] = None
) -> Assessment:
    """Build an assessment from {domain: [answer, ...]}; answers become q1..qN."""
    question_counts = question_counts or {}
    responses = {
        name: DomainResponse(
            domain=name,
            questions={f"q{i + 1}": value for i, value in enumerate(answers)},
            question_count=question_counts.get(name)
        )
        for name, answers in domains.items()
    }
    classification = None
    if sector is not None:
        classification = IndustryClassification(
            sector=sector,
            regulatory_classification=regulatory_classification
        )
    return Assessment(
        id=assessment_id,
        domain_responses=responses,
        company_name="Acme Ltd",
        industry_classification=classification
    )


@pytest.fixture
def config() -> TriageConfiguration:
    """Default configuration without retry backoff."""
    return TriageConfiguration(enrichment_retry_backoff_seconds=0.0)


@pytest.fixture
def rule_table() -> IndustryRuleTable:
    return IndustryRuleTable.default()


@pytest.fixture
def failing_llm() -> FakeLLMClient:
    return FakeLLMClient(RuntimeError("provider unavailable"))


@pytest.fixture
def build_analyzer(config, rule_table):
    """Factory: analyzer around the given LLM client."""
    def _build(llm_client: ILLMClient, cfg: Optional[TriageConfiguration] = None) -> TriageAnalyzer:
        cfg = cfg or config
        return TriageAnalyzer(ReasoningEnrichmentClient(llm_client, cfg), rule_table, cfg)
    return _build


@pytest.fixture
def fallback_analyzer(build_analyzer, failing_llm) -> TriageAnalyzer:
    """Analyzer whose enrichment always fails."""
    return build_analyzer(failing_llm)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def build_service(build_analyzer, audit_sink, config):
    """Factory: host service around the given LLM client."""
    def _build(llm_client: ILLMClient, failure_threshold: int = 5, exporter=None) -> TriageService:
        collector = TriageMetricsCollector(config, CircuitBreaker(failure_threshold=failure_threshold))
        return TriageService(build_analyzer(llm_client), audit_sink, collector, exporter)
    return _build
