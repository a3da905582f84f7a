"""
Triage Domain Entities
======================

Domain entities for the assessment triage module.

Contains pure Python business objects for assessment input, per-domain
scoring and the aggregate triage result, plus the prompt builder used
for reasoning-model enrichment.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Optional, List, Dict, Mapping, Union, Any, Tuple

from scalemap.config import (
    RegulatoryClassification, UNKNOWN_SECTOR, REGULATORY_CLASSIFICATIONS
)

AnswerValue = Union[int, float, str, None]

_REGULATORY_ALIASES = {"highly-regulated": RegulatoryClassification.HEAVILY}


def normalize_regulatory_classification(value: Optional[str]) -> Optional[str]:
    """Map accepted spellings onto the canonical regulatory classes."""
    if value is None:
        return None
    value = _REGULATORY_ALIASES.get(value, value)
    if value not in REGULATORY_CLASSIFICATIONS:
        raise ValueError(f"regulatory classification must be one of {REGULATORY_CLASSIFICATIONS}")
    return value


def _is_answered(value: AnswerValue) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _is_numeric(value: AnswerValue) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ========== Assessment input ==========

@dataclass(frozen=True)
class DomainResponse:
    """
    Answers for one business domain.

    questions maps question id -> numeric answer (1-5), free text or None.
    question_count is the size of the questionnaire for this domain when
    the caller knows it; otherwise the number of keys in questions is used.
    """
    domain: str
    questions: Dict[str, AnswerValue] = field(default_factory=dict)
    question_count: Optional[int] = None

    def __post_init__(self):
        if self.question_count is not None and self.question_count < len(self.questions):
            raise ValueError("question_count cannot be smaller than the number of questions supplied")

    @property
    def total_questions(self) -> int:
        return self.question_count if self.question_count is not None else len(self.questions)

    @property
    def answered_count(self) -> int:
        return sum(1 for value in self.questions.values() if _is_answered(value))

    @property
    def completeness(self) -> float:
        """Percentage (0-100) of questions answered with a non-null value."""
        total = self.total_questions
        if total == 0:
            return 0.0
        return self.answered_count / total * 100

    @property
    def numeric_answers(self) -> List[float]:
        return [float(v) for v in self.questions.values() if _is_numeric(v)]

    @property
    def free_text_answers(self) -> List[str]:
        return [v.strip() for v in self.questions.values() if isinstance(v, str) and v.strip()]


@dataclass(frozen=True)
class IndustryClassification:
    """Sector and regulatory classification of the assessed company."""
    sector: str
    sub_sector: Optional[str] = None
    regulatory_classification: Optional[str] = None
    business_model: Optional[str] = None
    company_stage: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(
            self,
            "regulatory_classification",
            normalize_regulatory_classification(self.regulatory_classification)
        )


@dataclass(frozen=True)
class Assessment:
    """
    Validated, persisted assessment handed to the engine by the calling handler.

    domain_responses may be None or empty; the validator rejects such input.
    """
    id: str
    domain_responses: Optional[Dict[str, DomainResponse]]
    company_name: str = ""
    industry_classification: Optional[IndustryClassification] = None
    company_stage: Optional[str] = None
    primary_challenges: Tuple[str, ...] = ()
    strategic_objectives: Tuple[str, ...] = ()


# ========== Scoring ==========

@dataclass(frozen=True)
class BaseScore:
    """Deterministic score derived from a domain's numeric answers."""
    domain: str
    score: float
    confidence: float
    numeric_count: int
    free_text_count: int
    completeness: float
    variance: float = 0.0

    @property
    def text_only(self) -> bool:
        return self.numeric_count == 0 and self.free_text_count > 0


@dataclass(frozen=True)
class IndustryContext:
    """Resolved industry context used to weight domain scores."""
    sector: str = UNKNOWN_SECTOR
    regulatory_classification: str = RegulatoryClassification.LIGHTLY
    weighting_multipliers: Dict[str, float] = field(default_factory=dict)
    required_domains: Tuple[str, ...] = ()
    preferred_domains: Tuple[str, ...] = ()
    excluded_domains: Tuple[str, ...] = ()
    benchmarks: Dict[str, float] = field(default_factory=dict)
    special_considerations: Tuple[str, ...] = ()

    @property
    def is_known(self) -> bool:
        return self.sector != UNKNOWN_SECTOR

    def multiplier_for(self, domain: str) -> float:
        return self.weighting_multipliers.get(domain, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sector": self.sector,
            "regulatoryClassification": self.regulatory_classification,
            "weightingMultipliers": dict(self.weighting_multipliers),
            "specificRules": list(self.required_domains),
            "excludedDomains": list(self.excluded_domains),
            "benchmarks": dict(self.benchmarks),
        }


@dataclass(frozen=True)
class DomainScore:
    """
    Per-domain triage result.

    Immutable; the cross-domain propagator rebuilds a boosted score with
    dataclasses.replace instead of changing it.
    """
    domain: str
    score: float
    confidence: float
    severity: str
    priority_level: str
    agent_activation: str
    reasoning: str
    critical_factors: List[str] = field(default_factory=list)
    cross_domain_impacts: List[str] = field(default_factory=list)
    base_score: float = 0.0
    industry_multiplier: float = 1.0

    def __post_init__(self):
        if not 1.0 <= self.score <= 5.0:
            raise ValueError("Score must be between 1 and 5")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "confidence": self.confidence,
            "severity": self.severity,
            "priorityLevel": self.priority_level,
            "agentActivation": self.agent_activation,
            "reasoning": self.reasoning,
            "criticalFactors": list(self.critical_factors),
            "crossDomainImpacts": list(self.cross_domain_impacts),
            "baseScore": self.base_score,
            "industryMultiplier": self.industry_multiplier,
        }


# ========== Enrichment ==========

@dataclass(frozen=True)
class TokenUsage:
    """Token usage of the enrichment call, real or estimated."""
    prompt: int = 0
    completion: int = 0
    estimated: bool = False

    @property
    def total(self) -> int:
        return self.prompt + self.completion


@dataclass(frozen=True)
class DomainEnrichment:
    """Reasoning-model adjustment for one domain."""
    domain: str
    adjusted_score: float
    confidence: float
    reasoning: str
    critical_factors: Tuple[str, ...] = ()
    severity_hint: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class EnrichmentResult:
    """
    Outcome of the single batched enrichment call.

    When degraded is True every domain carries base-score values and
    fallback_reason names the cause, one of the FallbackReason values
    in the enrichment client.
    """
    domains: Dict[str, DomainEnrichment]
    model_used: str
    token_usage: TokenUsage
    cost_estimate: float
    attempts: int = 0
    degraded: bool = False
    fallback_reason: Optional[str] = None
    latency_ms: int = 0


# ========== Result ==========

@dataclass(frozen=True)
class ProcessingMetrics:
    """Processing time, token usage and cost of a triage run."""
    processing_time_ms: int
    model_used: str
    token_usage: TokenUsage
    cost_estimate: float
    enrichment_status: str
    algorithm_version: str
    enrichment_attempts: int = 0
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processingTime": self.processing_time_ms,
            "modelUsed": self.model_used,
            "tokenUsage": {
                "prompt": self.token_usage.prompt,
                "completion": self.token_usage.completion,
                "total": self.token_usage.total,
                "estimated": self.token_usage.estimated,
            },
            "costEstimate": self.cost_estimate,
            "enrichmentStatus": self.enrichment_status,
            "enrichmentAttempts": self.enrichment_attempts,
            "fallbackReason": self.fallback_reason,
            "algorithmVersion": self.algorithm_version,
        }


@dataclass(frozen=True)
class IndustryCompliance:
    """Informational check of the selection against industry rules."""
    is_compliant: bool = True
    violations: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TriageAnalysis:
    """
    Aggregate triage result. Produced exactly once per run.

    domain_scores holds every scored domain; skipped_domains holds every
    other input domain with the reason it was not scored.
    """
    assessment_id: str
    domain_scores: Mapping[str, DomainScore]
    critical_domains: Tuple[str, ...]
    confidence: float
    reasoning: str
    industry_context: IndustryContext
    processing_metrics: ProcessingMetrics
    skipped_domains: Mapping[str, str] = field(default_factory=dict)
    compliance: IndustryCompliance = field(default_factory=IndustryCompliance)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # Read-only views; a returned analysis cannot be edited through its mappings
        object.__setattr__(self, "domain_scores", MappingProxyType(dict(self.domain_scores)))
        object.__setattr__(self, "skipped_domains", MappingProxyType(dict(self.skipped_domains)))

    @property
    def fallback_mode(self) -> bool:
        return self.processing_metrics.fallback_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase record persisted by the calling handler."""
        return {
            "assessmentId": self.assessment_id,
            "domainScores": {name: score.to_dict() for name, score in self.domain_scores.items()},
            "criticalDomains": list(self.critical_domains),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "industryContext": self.industry_context.to_dict(),
            "processingMetrics": self.processing_metrics.to_dict(),
            "skippedDomains": dict(self.skipped_domains),
            "compliance": {
                "isCompliant": self.compliance.is_compliant,
                "violations": list(self.compliance.violations),
                "recommendations": list(self.compliance.recommendations),
            },
            "createdAt": self.created_at.isoformat(),
        }


# ========== Prompting ==========

class EnrichmentPromptBuilder:
    """
    Builds prompts for batched domain enrichment.

    All prompt logic lives here so the client stays a thin transport.
    """

    SYSTEM_PROMPT = """You are an expert business consultant performing domain triage analysis.

You receive a multi-domain operational assessment with a deterministic base
score per domain (1 = healthy, 5 = severe problems needing expert attention)
and the company's industry context.

For EVERY domain listed, return an adjusted score, your confidence, a short
explanation and the critical factors behind it. Keep adjustments grounded in
the answers provided; do not invent domains.

Respond ONLY with a JSON object:
{
  "domainAnalysis": {
    "domain-name": {
      "adjustedScore": 4.2,
      "confidence": 0.85,
      "reasoning": "why the score was adjusted",
      "criticalFactors": ["factor 1", "factor 2"],
      "severity": "high"
    }
  }
}

adjustedScore must be between 1.0 and 5.0, confidence between 0.0 and 1.0,
severity one of: low, medium, high, critical."""

    MAX_FREE_TEXT_CHARS = 300

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for enrichment."""
        return cls.SYSTEM_PROMPT

    @classmethod
    def build_prompt(
        cls,
        assessment: Assessment,
        base_scores: Dict[str, BaseScore],
        industry_context: IndustryContext
    ) -> str:
        """Build the user prompt covering all candidate domains in one request."""
        domains = []
        for name in sorted(base_scores):
            base = base_scores[name]
            response = (assessment.domain_responses or {}).get(name)
            free_text = response.free_text_answers if response else []
            domains.append({
                "domain": name,
                "baseScore": round(base.score, 2),
                "baseConfidence": round(base.confidence, 2),
                "numericAnswers": base.numeric_count,
                "completeness": round(base.completeness, 1),
                "industryMultiplier": industry_context.multiplier_for(name),
                "benchmark": industry_context.benchmarks.get(name),
                "freeText": [text[:cls.MAX_FREE_TEXT_CHARS] for text in free_text],
            })

        challenges = ", ".join(assessment.primary_challenges) or "Not specified"
        objectives = ", ".join(assessment.strategic_objectives) or "Not specified"

        return f"""Analyze this operational assessment for domain triage.

Company: {assessment.company_name or 'Unknown'}
Industry: {industry_context.sector} ({industry_context.regulatory_classification})
Stage: {assessment.company_stage or 'Unknown'}
Primary challenges: {challenges}
Strategic objectives: {objectives}

Domains:
{json.dumps(domains, indent=2)}

Return the JSON object described in the instructions."""
