"""
Triage Value Objects
====================

Immutable configuration and rule objects for the triage domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared between concurrent runs.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scalemap.config import (
    Severity, PriorityLevel, AgentActivation, RegulatoryClassification,
    Settings
)
from scalemap.triage.domain.entities import normalize_regulatory_classification


# ========== Severity threshold table ==========

@dataclass(frozen=True)
class SeverityBand:
    """One row of the score -> severity/priority/activation table."""
    min_score: float
    severity: str
    priority_level: str
    agent_activation: str


# Evaluated in order, first match wins
SEVERITY_BANDS: Tuple[SeverityBand, ...] = (
    SeverityBand(4.5, Severity.CRITICAL, PriorityLevel.CRITICAL, AgentActivation.REQUIRED),
    SeverityBand(4.0, Severity.HIGH, PriorityLevel.HIGH, AgentActivation.REQUIRED),
    SeverityBand(3.5, Severity.MEDIUM, PriorityLevel.MODERATE, AgentActivation.CONDITIONAL),
    SeverityBand(float("-inf"), Severity.LOW, PriorityLevel.HEALTHY, AgentActivation.NOT_REQUIRED),
)


def classify_score(score: float, bands: Tuple[SeverityBand, ...] = SEVERITY_BANDS) -> SeverityBand:
    """Return the first band whose lower bound the score reaches."""
    for band in bands:
        if score >= band.min_score:
            return band
    return bands[-1]


# ========== Cross-domain correlations ==========

CORRELATED_DOMAIN_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("strategic-alignment", "financial-management"),
    ("revenue-engine", "customer-experience"),
    ("operational-excellence", "technology-data"),
    ("people-organization", "change-management"),
    ("risk-compliance", "financial-management"),
    ("partnerships", "customer-success"),
)


# ========== Engine configuration ==========

class ModelPricing(BaseModel):
    """Price per 1,000 tokens for one model (GBP)."""
    model_config = ConfigDict(frozen=True)

    prompt_per_1k: float = Field(ge=0.0)
    completion_per_1k: float = Field(ge=0.0)

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * self.prompt_per_1k + completion_tokens * self.completion_per_1k) / 1000


DEFAULT_MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(prompt_per_1k=0.00012, completion_per_1k=0.00048),
    "gpt-4o": ModelPricing(prompt_per_1k=0.002, completion_per_1k=0.008),
}


class TriageConfiguration(BaseModel):
    """
    Read-only configuration injected into the triage engine.

    Every threshold the engine uses is a field here with its documented
    default; nothing is read from the environment.
    """
    model_config = ConfigDict(frozen=True)

    algorithm_version: str = "1.0.0"

    # Model selection
    primary_model: str = "gpt-4o-mini"
    fallback_model: str = "gpt-4o"
    cost_optimized_model: str = "gpt-4o-mini"
    model_pricing: Dict[str, ModelPricing] = Field(default_factory=lambda: dict(DEFAULT_MODEL_PRICING))
    default_pricing: ModelPricing = Field(
        default_factory=lambda: ModelPricing(prompt_per_1k=0.002, completion_per_1k=0.008)
    )

    # Thresholds
    # Score at which a domain counts as high priority and boosts its correlated partners
    domain_selection_threshold: float = Field(default=4.0, ge=1.0, le=5.0)
    confidence_minimum: float = Field(default=0.7, ge=0.0, le=1.0)
    min_completeness: float = Field(default=0.4, ge=0.0, le=1.0)

    # Performance budget
    max_processing_seconds: float = Field(default=120.0, gt=0)
    enrichment_timeout_seconds: float = Field(default=45.0, gt=0)
    enrichment_max_retries: int = Field(default=1, ge=0, le=3)
    enrichment_retry_backoff_seconds: float = Field(default=1.0, ge=0)
    max_tokens_per_request: int = Field(default=8000, ge=500)
    max_completion_tokens: int = Field(default=3000, ge=100)
    max_cost_per_triage: float = Field(default=0.5, ge=0.0)
    chars_per_token: int = Field(default=4, ge=1)

    # Scoring
    fallback_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    text_only_confidence_cap: float = Field(default=0.3, ge=0.0, le=1.0)
    text_only_score: float = Field(default=3.0, ge=1.0, le=5.0)

    # Propagation
    cross_domain_boost: float = Field(default=0.2, ge=0.0, le=1.0)
    correlated_pairs: Tuple[Tuple[str, str], ...] = CORRELATED_DOMAIN_PAIRS

    # Selection
    min_critical_domains: int = Field(default=3, ge=1)
    max_critical_domains: int = Field(default=5, ge=1)

    # Narrative
    reasoning_excerpt_chars: int = Field(default=400, ge=50)

    @model_validator(mode="after")
    def validate_domain_bounds(self) -> "TriageConfiguration":
        """Ensure the critical domain range is well formed."""
        if self.min_critical_domains > self.max_critical_domains:
            raise ValueError("min_critical_domains cannot exceed max_critical_domains")
        return self

    def pricing_for(self, model: str) -> ModelPricing:
        """Get pricing for a model, falling back to the default rate."""
        return self.model_pricing.get(model, self.default_pricing)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TriageConfiguration":
        """Map application settings onto the engine configuration."""
        return cls(
            algorithm_version=settings.triage_algorithm_version,
            primary_model=settings.triage_primary_model,
            fallback_model=settings.triage_fallback_model,
            cost_optimized_model=settings.triage_cost_optimized_model,
            domain_selection_threshold=settings.triage_domain_selection_threshold,
            confidence_minimum=settings.triage_confidence_minimum,
            min_completeness=settings.triage_min_completeness,
            max_processing_seconds=settings.triage_max_processing_seconds,
            max_tokens_per_request=settings.triage_max_tokens,
            max_cost_per_triage=settings.triage_max_cost,
        )


# ========== Industry rules ==========

class IndustryRule(BaseModel):
    """Weighting and domain rules for one industry sector."""
    model_config = ConfigDict(frozen=True)

    regulatory_classification: str = RegulatoryClassification.LIGHTLY
    weighting_multipliers: Dict[str, float] = Field(default_factory=dict)
    required_domains: List[str] = Field(default_factory=list)
    preferred_domains: List[str] = Field(default_factory=list)
    excluded_domains: List[str] = Field(default_factory=list)
    special_considerations: List[str] = Field(default_factory=list)
    benchmarks: Dict[str, float] = Field(default_factory=dict)

    @field_validator("regulatory_classification")
    @classmethod
    def validate_regulatory_classification(cls, v: str) -> str:
        """Accept canonical classes plus the highly-regulated alias."""
        return normalize_regulatory_classification(v)

    @field_validator("weighting_multipliers")
    @classmethod
    def validate_multipliers(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Multipliers must be positive and sane."""
        for domain, multiplier in v.items():
            if not 0.0 < multiplier <= 3.0:
                raise ValueError(f"multiplier for {domain} must be in (0, 3], got {multiplier}")
        return v


class IndustryRuleTable(BaseModel):
    """
    Per-sector rule table, resolved from static configuration.

    Read-only to the engine.
    """
    model_config = ConfigDict(frozen=True)

    sectors: Dict[str, IndustryRule] = Field(default_factory=dict)

    def get(self, sector: Optional[str]) -> Optional[IndustryRule]:
        if sector is None:
            return None
        return self.sectors.get(sector)

    @classmethod
    def default(cls) -> "IndustryRuleTable":
        """Built-in rule table for the supported sectors."""
        return cls(sectors={name: IndustryRule(**rule) for name, rule in DEFAULT_INDUSTRY_RULES.items()})


DEFAULT_INDUSTRY_RULES: Dict[str, dict] = {
    "financial-services": {
        "regulatory_classification": RegulatoryClassification.HEAVILY,
        "required_domains": ["risk-compliance", "financial-management"],
        "preferred_domains": ["operational-excellence", "strategic-alignment", "technology-data"],
        "weighting_multipliers": {
            "risk-compliance": 1.5,
            "financial-management": 1.3,
            "operational-excellence": 1.2,
            "technology-data": 1.1,
            "strategic-alignment": 1.1,
        },
        "special_considerations": [
            "Regulatory compliance is mandatory",
            "Financial risk management takes precedence",
        ],
        "benchmarks": {
            "risk-compliance": 4.2,
            "financial-management": 4.0,
            "operational-excellence": 3.8,
            "strategic-alignment": 3.5,
        },
    },
    "healthcare": {
        "regulatory_classification": RegulatoryClassification.HEAVILY,
        "required_domains": ["risk-compliance"],
        "preferred_domains": ["operational-excellence", "people-organization", "technology-data", "customer-experience"],
        "weighting_multipliers": {
            "risk-compliance": 1.4,
            "operational-excellence": 1.3,
            "people-organization": 1.2,
            "technology-data": 1.2,
            "customer-experience": 1.1,
        },
        "special_considerations": [
            "Patient safety is paramount",
            "Clinical workflow efficiency is critical",
        ],
        "benchmarks": {
            "risk-compliance": 4.3,
            "operational-excellence": 4.0,
            "people-organization": 3.9,
            "customer-experience": 3.7,
        },
    },
    "technology": {
        "regulatory_classification": RegulatoryClassification.LIGHTLY,
        "preferred_domains": ["technology-data", "revenue-engine", "people-organization", "strategic-alignment"],
        "excluded_domains": ["supply-chain"],
        "weighting_multipliers": {
            "technology-data": 1.4,
            "revenue-engine": 1.3,
            "people-organization": 1.2,
            "strategic-alignment": 1.2,
            "customer-experience": 1.1,
        },
        "special_considerations": [
            "Technical scalability is critical",
            "Talent retention challenges",
        ],
        "benchmarks": {
            "technology-data": 4.1,
            "revenue-engine": 3.9,
            "people-organization": 3.7,
            "strategic-alignment": 3.8,
        },
    },
    "manufacturing": {
        "regulatory_classification": RegulatoryClassification.MODERATELY,
        "required_domains": ["supply-chain", "operational-excellence"],
        "preferred_domains": ["people-organization", "risk-compliance", "strategic-alignment"],
        "weighting_multipliers": {
            "supply-chain": 1.5,
            "operational-excellence": 1.4,
            "people-organization": 1.2,
            "risk-compliance": 1.1,
            "strategic-alignment": 1.1,
        },
        "special_considerations": [
            "Supply chain resilience is critical",
            "Quality control and safety",
        ],
        "benchmarks": {
            "supply-chain": 4.0,
            "operational-excellence": 4.2,
            "people-organization": 3.6,
            "risk-compliance": 3.8,
        },
    },
    "retail": {
        "regulatory_classification": RegulatoryClassification.LIGHTLY,
        "required_domains": ["customer-experience"],
        "preferred_domains": ["revenue-engine", "supply-chain", "customer-success", "operational-excellence"],
        "weighting_multipliers": {
            "customer-experience": 1.4,
            "revenue-engine": 1.3,
            "supply-chain": 1.2,
            "customer-success": 1.2,
            "operational-excellence": 1.1,
        },
        "special_considerations": [
            "Customer experience drives retention",
            "Inventory management is critical",
        ],
        "benchmarks": {
            "customer-experience": 4.0,
            "revenue-engine": 3.8,
            "supply-chain": 3.9,
            "customer-success": 3.7,
        },
    },
    "professional-services": {
        "regulatory_classification": RegulatoryClassification.MODERATELY,
        "required_domains": ["people-organization"],
        "preferred_domains": ["customer-success", "strategic-alignment", "operational-excellence", "revenue-engine"],
        "excluded_domains": ["supply-chain", "technology-data"],
        "weighting_multipliers": {
            "people-organization": 1.5,
            "customer-success": 1.3,
            "strategic-alignment": 1.2,
            "operational-excellence": 1.2,
            "revenue-engine": 1.1,
        },
        "special_considerations": [
            "Talent is the primary asset",
            "Client relationship management",
        ],
        "benchmarks": {
            "people-organization": 4.1,
            "customer-success": 3.9,
            "strategic-alignment": 3.7,
            "operational-excellence": 3.6,
        },
    },
}


# ========== Validation report ==========

@dataclass(frozen=True)
class ValidationReport:
    """Outcome of the completeness & shape check."""
    scoreable_domains: Tuple[str, ...]
    skipped_domains: Dict[str, str] = field(default_factory=dict)
    completeness: Dict[str, float] = field(default_factory=dict)

    @property
    def mean_completeness(self) -> float:
        """Mean completeness (0-1) of the scoreable domains."""
        if not self.scoreable_domains:
            return 0.0
        return sum(self.completeness[d] for d in self.scoreable_domains) / len(self.scoreable_domains) / 100
