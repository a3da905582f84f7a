"""
Triage Application Layer
=========================

Application layer for the assessment triage module.

Contains:
- Services: Engine pipeline and host service orchestration
- DTOs: Data transfer objects for API serialization
"""

from scalemap.triage.application.dto import (
    AnalyzeRequest,
    DomainResponseIn,
    IndustryClassificationIn,
    TriageAnalysisResponse,
    DomainScoreInfo,
    IndustryContextInfo,
    ProcessingMetricsInfo,
    MetricsResponse,
)
from scalemap.triage.application.services import (
    TriageAnalyzer,
    TriageService,
    IEnrichmentClient,
    IAuditSink,
    IMetricsCollector,
)

__all__ = [
    # DTOs
    "AnalyzeRequest",
    "DomainResponseIn",
    "IndustryClassificationIn",
    "TriageAnalysisResponse",
    "DomainScoreInfo",
    "IndustryContextInfo",
    "ProcessingMetricsInfo",
    "MetricsResponse",
    # Services
    "TriageAnalyzer",
    "TriageService",
    # Interfaces
    "IEnrichmentClient",
    "IAuditSink",
    "IMetricsCollector",
]
