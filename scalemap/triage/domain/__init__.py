"""
Triage Domain Layer
===================

Domain layer for assessment triage.

Contains:
- Entities: Assessment input, DomainScore, TriageAnalysis and friends
- Value Objects: TriageConfiguration, IndustryRuleTable, severity bands
- Scoring: pure pipeline steps (validation, base score, weighting,
  propagation, selection, narrative)

This layer is framework-agnostic and contains pure business logic.
"""

from scalemap.triage.domain.entities import (
    AnswerValue,
    DomainResponse,
    IndustryClassification,
    Assessment,
    BaseScore,
    IndustryContext,
    DomainScore,
    TokenUsage,
    DomainEnrichment,
    EnrichmentResult,
    ProcessingMetrics,
    IndustryCompliance,
    TriageAnalysis,
    EnrichmentPromptBuilder,
)
from scalemap.triage.domain.value_objects import (
    SeverityBand,
    SEVERITY_BANDS,
    CORRELATED_DOMAIN_PAIRS,
    classify_score,
    ModelPricing,
    TriageConfiguration,
    IndustryRule,
    IndustryRuleTable,
    ValidationReport,
)
from scalemap.triage.domain.scoring import (
    FALLBACK_REASONING,
    SkipReason,
    clamp_score,
    AssessmentValidator,
    BaseScoreCalculator,
    IndustryContextResolver,
    ScoreCombiner,
    CrossDomainPropagator,
    CriticalDomainSelector,
    IndustryComplianceChecker,
    TriageResultAssembler,
)

__all__ = [
    "AnswerValue",
    "DomainResponse",
    "IndustryClassification",
    "Assessment",
    "BaseScore",
    "IndustryContext",
    "DomainScore",
    "TokenUsage",
    "DomainEnrichment",
    "EnrichmentResult",
    "ProcessingMetrics",
    "IndustryCompliance",
    "TriageAnalysis",
    "EnrichmentPromptBuilder",
    "SeverityBand",
    "SEVERITY_BANDS",
    "CORRELATED_DOMAIN_PAIRS",
    "classify_score",
    "ModelPricing",
    "TriageConfiguration",
    "IndustryRule",
    "IndustryRuleTable",
    "ValidationReport",
    "FALLBACK_REASONING",
    "SkipReason",
    "clamp_score",
    "AssessmentValidator",
    "BaseScoreCalculator",
    "IndustryContextResolver",
    "ScoreCombiner",
    "CrossDomainPropagator",
    "CriticalDomainSelector",
    "IndustryComplianceChecker",
    "TriageResultAssembler",
]
