"""
Triage Application DTOs
========================

Data Transfer Objects for Triage API layer.

Pydantic models for request/response validation. The wire format is
camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any, Literal, Union, Annotated

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, field_validator, model_validator
from pydantic.alias_generators import to_camel

from scalemap.config import BUSINESS_DOMAINS
from scalemap.triage.domain import Assessment, DomainResponse, IndustryClassification
from scalemap.triage.domain.entities import normalize_regulatory_classification


# ========== Type Aliases for Literals ==========
SeverityStr = Literal["critical", "high", "medium", "low"]
PriorityLevelStr = Literal["CRITICAL", "HIGH", "MODERATE", "HEALTHY"]
AgentActivationStr = Literal["REQUIRED", "CONDITIONAL", "NOT_REQUIRED"]
HealthStatusStr = Literal["healthy", "degraded", "critical"]
# Numeric answers are 1-5 scale ratings; booleans are rejected rather than read as 1
ScaleAnswer = Union[Annotated[StrictInt, Field(ge=1, le=5)], Annotated[StrictFloat, Field(ge=1, le=5)]]
AnswerIn = Optional[Union[ScaleAnswer, str]]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request DTOs ==========

class DomainResponseIn(CamelModel):
    """Answers for one domain."""
    questions: Dict[str, AnswerIn] = Field(default_factory=dict, description="Question id -> answer")
    question_count: Optional[int] = Field(None, ge=0, description="Questionnaire size for this domain")

    @model_validator(mode="after")
    def validate_question_count(self) -> "DomainResponseIn":
        if self.question_count is not None and self.question_count < len(self.questions):
            raise ValueError("questionCount cannot be smaller than the number of questions supplied")
        return self


class IndustryClassificationIn(CamelModel):
    """Industry classification of the assessed company."""
    sector: str = Field(..., min_length=1)
    sub_sector: Optional[str] = None
    regulatory_classification: Optional[str] = None
    business_model: Optional[str] = None
    company_stage: Optional[str] = None

    @field_validator("regulatory_classification")
    @classmethod
    def validate_regulatory_classification(cls, v: Optional[str]) -> Optional[str]:
        return normalize_regulatory_classification(v)

    def to_domain(self) -> IndustryClassification:
        return IndustryClassification(
            sector=self.sector,
            sub_sector=self.sub_sector,
            regulatory_classification=self.regulatory_classification,
            business_model=self.business_model,
            company_stage=self.company_stage
        )


class AnalyzeRequest(CamelModel):
    """Request model for assessment triage."""
    assessment_id: str = Field(..., min_length=1, description="Assessment ID")
    company_name: str = ""
    domain_responses: Optional[Dict[str, DomainResponseIn]] = None
    industry_classification: Optional[IndustryClassificationIn] = None
    company_stage: Optional[str] = None
    primary_challenges: List[str] = Field(default_factory=list)
    strategic_objectives: List[str] = Field(default_factory=list)

    @field_validator("domain_responses")
    @classmethod
    def validate_domains(cls, v: Optional[Dict[str, DomainResponseIn]]) -> Optional[Dict[str, DomainResponseIn]]:
        """Reject domain ids outside the twelve business domains."""
        if v:
            unknown = sorted(set(v) - set(BUSINESS_DOMAINS))
            if unknown:
                raise ValueError(f"Unknown business domains: {', '.join(unknown)}")
        return v

    def to_domain(self) -> Assessment:
        """Convert to domain entity."""
        responses = None
        if self.domain_responses is not None:
            responses = {
                name: DomainResponse(
                    domain=name,
                    questions=dict(response.questions),
                    question_count=response.question_count
                )
                for name, response in self.domain_responses.items()
            }
        return Assessment(
            id=self.assessment_id,
            domain_responses=responses,
            company_name=self.company_name,
            industry_classification=(
                self.industry_classification.to_domain() if self.industry_classification else None
            ),
            company_stage=self.company_stage,
            primary_challenges=tuple(self.primary_challenges),
            strategic_objectives=tuple(self.strategic_objectives)
        )


# ========== Response DTOs ==========

class DomainScoreInfo(CamelModel):
    """Per-domain triage result."""
    score: float = Field(..., ge=1.0, le=5.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: SeverityStr
    priority_level: PriorityLevelStr
    agent_activation: AgentActivationStr
    reasoning: str
    critical_factors: List[str]
    cross_domain_impacts: List[str]
    base_score: float
    industry_multiplier: float


class IndustryContextInfo(CamelModel):
    """Resolved industry context."""
    sector: str
    regulatory_classification: str
    weighting_multipliers: Dict[str, float]
    specific_rules: List[str]
    excluded_domains: List[str]
    benchmarks: Dict[str, float]


class TokenUsageInfo(CamelModel):
    prompt: int
    completion: int
    total: int
    estimated: bool


class ProcessingMetricsInfo(CamelModel):
    """Processing time, tokens and cost of the run."""
    processing_time: int
    model_used: str
    token_usage: TokenUsageInfo
    cost_estimate: float
    enrichment_status: str
    enrichment_attempts: int
    fallback_reason: Optional[str]
    algorithm_version: str


class ComplianceInfo(CamelModel):
    is_compliant: bool
    violations: List[str]
    recommendations: List[str]


class TriageAnalysisResponse(CamelModel):
    """Response model for assessment triage."""
    assessment_id: str
    domain_scores: Dict[str, DomainScoreInfo]
    critical_domains: List[str]
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    industry_context: IndustryContextInfo
    processing_metrics: ProcessingMetricsInfo
    skipped_domains: Dict[str, str]
    compliance: ComplianceInfo
    created_at: datetime

    @classmethod
    def from_domain(cls, analysis: Any) -> "TriageAnalysisResponse":
        """Create from a TriageAnalysis."""
        return cls.model_validate(analysis.to_dict())


class HealthInfo(CamelModel):
    status: HealthStatusStr
    issues: List[str]
    recommendations: List[str]


class MetricsResponse(CamelModel):
    """Response model for triage metrics."""
    metrics: Dict[str, Any]
    health: HealthInfo
