"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety. The triage engine never
    reads these directly; they are mapped onto a TriageConfiguration at
    startup.
    """

    # ========== Application ==========
    app_name: str = Field(default="scalemap-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # ========== Reasoning Model (OpenAI) ==========
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for triage enrichment"
    )
    openai_organization: Optional[str] = Field(
        default=None,
        description="Optional OpenAI organization id"
    )
    llm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for an OpenAI-compatible provider (e.g. https://api.groq.com/openai/v1)"
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )

    # ========== Triage Engine ==========
    triage_algorithm_version: str = Field(default="1.0.0", description="Triage algorithm version")
    triage_primary_model: str = Field(default="gpt-4o-mini", description="Primary enrichment model")
    triage_fallback_model: str = Field(default="gpt-4o", description="Model used for the retry attempt")
    triage_cost_optimized_model: str = Field(
        default="gpt-4o-mini",
        description="Model used when the primary model would exceed the cost ceiling"
    )
    triage_domain_selection_threshold: float = Field(
        default=4.0,
        description="Score at or above which a domain counts as high priority",
        ge=1.0,
        le=5.0
    )
    triage_confidence_minimum: float = Field(
        default=0.7,
        description="Target overall confidence; lower values are flagged in metrics",
        ge=0.0,
        le=1.0
    )
    triage_min_completeness: float = Field(
        default=0.4,
        description="Fraction of questions a domain must have answered to be scored",
        ge=0.0,
        le=1.0
    )
    triage_max_processing_seconds: float = Field(
        default=120.0,
        description="Time budget for a full triage run including one retry",
        gt=0
    )
    triage_max_tokens: int = Field(
        default=8000,
        description="Max prompt + completion tokens per enrichment request",
        ge=500
    )
    triage_max_cost: float = Field(
        default=0.5,
        description="Max projected cost of one triage run (GBP)",
        ge=0.0
    )
    triage_industry_rules_path: Path = Field(
        default=Path("industry_rules.yaml"),
        description="Optional YAML file overriding the built-in industry rule table"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-eu-west-2.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Severity(str):
    """Domain severity tiers."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PriorityLevel(str):
    """Domain priority levels."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    HEALTHY = "HEALTHY"


class AgentActivation(str):
    """Whether a domain needs a deep-dive agent pass."""
    REQUIRED = "REQUIRED"
    CONDITIONAL = "CONDITIONAL"
    NOT_REQUIRED = "NOT_REQUIRED"


class RegulatoryClassification(str):
    """Regulatory burden of an industry sector."""
    LIGHTLY = "lightly-regulated"
    MODERATELY = "moderately-regulated"
    HEAVILY = "heavily-regulated"


class AuditEvent(str):
    """Audit log event names emitted around a triage run."""
    TRIAGE_STARTED = "triage_started"
    TRIAGE_COMPLETED = "triage_completed"
    TRIAGE_FAILED = "triage_failed"
    VALIDATION_FAILED = "validation_failed"


class EnrichmentStatus(str):
    """Outcome of the reasoning enrichment step."""
    ENRICHED = "enriched"
    FALLBACK = "fallback"


UNKNOWN_SECTOR = "unknown"


# ========== Lists for validation ==========

BUSINESS_DOMAINS = [
    "strategic-alignment", "financial-management", "revenue-engine",
    "operational-excellence", "people-organization", "technology-data",
    "customer-experience", "supply-chain", "risk-compliance",
    "partnerships", "customer-success", "change-management"
]
SEVERITY_LEVELS = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
REGULATORY_CLASSIFICATIONS = [
    RegulatoryClassification.LIGHTLY,
    RegulatoryClassification.MODERATELY,
    RegulatoryClassification.HEAVILY
]
