"""
Triage Infrastructure Layer
============================

Infrastructure implementations for the assessment triage module.

Contains:
- External: Reasoning enrichment client and industry rule loader
- Monitoring: Metrics collector, circuit breaker and audit sink
"""

from scalemap.triage.infrastructure.external import (
    ReasoningEnrichmentClient,
    IndustryRuleLoader,
    FallbackReason,
    EnrichmentPayload,
    DomainAnalysisPayload,
)
from scalemap.triage.infrastructure.monitoring import (
    CircuitBreaker,
    CircuitState,
    HealthStatus,
    TriageMetricsCollector,
    LoggingAuditSink,
)

__all__ = [
    "ReasoningEnrichmentClient",
    "IndustryRuleLoader",
    "FallbackReason",
    "EnrichmentPayload",
    "DomainAnalysisPayload",
    "CircuitBreaker",
    "CircuitState",
    "HealthStatus",
    "TriageMetricsCollector",
    "LoggingAuditSink",
]
