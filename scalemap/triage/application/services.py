"""
Triage Application Services
============================

Application services for assessment triage.

TriageAnalyzer runs the engine pipeline for one assessment; TriageService
wraps it with audit logging, metrics and the enrichment circuit breaker.
"""

import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

from scalemap.config import AuditEvent, EnrichmentStatus
from scalemap.core import InsufficientDataError, ValidationException
from scalemap.shared.infrastructure.logging import get_logger
from scalemap.triage.domain import (
    Assessment, BaseScore, EnrichmentResult, IndustryContext, ProcessingMetrics,
    TriageAnalysis, TriageConfiguration, IndustryRuleTable, SkipReason,
    AssessmentValidator, BaseScoreCalculator, IndustryContextResolver, ScoreCombiner,
    CrossDomainPropagator, CriticalDomainSelector, IndustryComplianceChecker,
    TriageResultAssembler
)

logger = get_logger(__name__)


# ========== Interfaces ==========

class IEnrichmentClient(ABC):
    """Interface for the batched reasoning enrichment step."""

    @abstractmethod
    async def enrich(
        self,
        assessment: Assessment,
        base_scores: Dict[str, BaseScore],
        industry_context: IndustryContext,
        deadline: Optional[float] = None,
        allow_call: bool = True
    ) -> EnrichmentResult:
        """Enrich candidate domains; never raises for external failures."""


class IAuditSink(ABC):
    """Interface for the triage audit trail."""

    @abstractmethod
    async def record(self, event: str, assessment_id: str, metadata: Dict[str, Any]) -> None:
        """Record one audit event."""


class IMetricsCollector(ABC):
    """Interface for run metrics and the enrichment circuit breaker."""

    @abstractmethod
    def allow_enrichment(self) -> bool:
        """Whether the next run may call the reasoning model."""

    @abstractmethod
    def record_completion(self, analysis: TriageAnalysis) -> None:
        """Record a finished run, including whether enrichment had to fall back."""

    @abstractmethod
    def record_failure(self) -> None:
        """Record a run that raised."""


# ========== Engine ==========

class TriageAnalyzer:
    """
    Assessment triage engine.

    Stateless between calls: everything a run needs arrives as arguments
    or lives in immutable configuration, so one instance can serve
    concurrent runs.
    """

    def __init__(
        self,
        enrichment_client: IEnrichmentClient,
        rule_table: Optional[IndustryRuleTable] = None,
        config: Optional[TriageConfiguration] = None
    ):
        self._config = config or TriageConfiguration()
        self._enrichment = enrichment_client
        self._validator = AssessmentValidator(self._config.min_completeness)
        self._calculator = BaseScoreCalculator(self._config)
        self._resolver = IndustryContextResolver(rule_table or IndustryRuleTable.default())
        self._combiner = ScoreCombiner(self._config)
        self._propagator = CrossDomainPropagator(
            self._config.correlated_pairs,
            boost=self._config.cross_domain_boost,
            trigger=self._config.domain_selection_threshold
        )
        self._selector = CriticalDomainSelector(
            self._config.min_critical_domains,
            self._config.max_critical_domains
        )
        self._compliance = IndustryComplianceChecker()
        self._assembler = TriageResultAssembler(self._config)

    @property
    def config(self) -> TriageConfiguration:
        return self._config

    async def perform_triage(
        self,
        assessment: Assessment,
        allow_enrichment: bool = True
    ) -> TriageAnalysis:
        """
        Triage one assessment.

        Args:
            assessment: Assessment to analyze
            allow_enrichment: False skips the reasoning-model call

        Returns:
            TriageAnalysis with scores, critical domains and metrics

        Raises:
            MalformedAssessmentError: No domain responses
            InsufficientDataError: No domain meets the completeness threshold
        """
        start_time = time.perf_counter()
        deadline = time.monotonic() + self._config.max_processing_seconds
        classification = assessment.industry_classification

        report = self._validator.validate(
            assessment,
            excluded_domains=self._resolver.excluded_domains(classification)
        )

        base_scores = self._calculator.calculate_all(assessment, report.scoreable_domains)
        skipped = dict(report.skipped_domains)
        for name in report.scoreable_domains:
            if name not in base_scores:
                skipped[name] = SkipReason.NO_ANSWERS
        if not base_scores:
            raise InsufficientDataError(self._config.min_completeness, report.completeness, assessment.id, skipped)

        industry_context = self._resolver.resolve(classification, base_scores.keys())

        enrichment = await self._enrichment.enrich(
            assessment,
            base_scores,
            industry_context,
            deadline=deadline,
            allow_call=allow_enrichment
        )

        scores = self._combiner.combine(base_scores, enrichment, industry_context)
        self._propagator.propagate(scores)
        critical_domains = self._selector.select(scores)
        compliance = self._compliance.check(
            critical_domains, industry_context, self._config.max_critical_domains
        )

        confidence = self._assembler.overall_confidence(
            scores, base_scores, report.mean_completeness, enrichment.degraded
        )
        reasoning = self._assembler.build_reasoning(scores, critical_domains, industry_context)

        metrics = ProcessingMetrics(
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
            model_used=enrichment.model_used,
            token_usage=enrichment.token_usage,
            cost_estimate=enrichment.cost_estimate,
            enrichment_status=EnrichmentStatus.FALLBACK if enrichment.degraded else EnrichmentStatus.ENRICHED,
            algorithm_version=self._config.algorithm_version,
            enrichment_attempts=enrichment.attempts,
            fallback_reason=enrichment.fallback_reason if enrichment.degraded else None
        )

        logger.info(
            "Triage completed",
            extra={
                "assessment_id": assessment.id,
                "scored_domains": len(scores),
                "skipped_domains": len(skipped),
                "critical_domains": list(critical_domains),
                "confidence": confidence,
                "sector": industry_context.sector,
                "enrichment_status": metrics.enrichment_status,
                "fallback_reason": metrics.fallback_reason,
                "processing_time_ms": metrics.processing_time_ms
            }
        )

        return TriageAnalysis(
            assessment_id=assessment.id,
            domain_scores=scores,
            critical_domains=critical_domains,
            confidence=confidence,
            reasoning=reasoning,
            industry_context=industry_context,
            processing_metrics=metrics,
            skipped_domains=skipped,
            compliance=compliance
        )


# ========== Host service ==========

class TriageService:
    """
    Host-side wrapper around the engine.

    Owns the audit trail, run metrics and circuit breaker; the engine
    itself stays stateless.
    """

    def __init__(
        self,
        analyzer: TriageAnalyzer,
        audit_sink: IAuditSink,
        metrics_collector: IMetricsCollector,
        exporter: Optional[Any] = None
    ):
        self._analyzer = analyzer
        self._audit = audit_sink
        self._metrics = metrics_collector
        self._exporter = exporter

    @property
    def metrics(self) -> IMetricsCollector:
        return self._metrics

    async def perform_triage(
        self,
        assessment: Assessment,
        request_id: Optional[str] = None
    ) -> TriageAnalysis:
        """
        Run triage with auditing and metrics.

        Errors are audited and re-raised unchanged.
        """
        request_id = request_id or str(uuid.uuid4())
        version = self._analyzer.config.algorithm_version
        allow_enrichment = self._metrics.allow_enrichment()

        await self._audit.record(AuditEvent.TRIAGE_STARTED, assessment.id, {
            "request_id": request_id,
            "algorithm_version": version,
            "domain_count": len(assessment.domain_responses or {}),
            "enrichment_allowed": allow_enrichment
        })

        try:
            analysis = await self._analyzer.perform_triage(assessment, allow_enrichment=allow_enrichment)
        except ValidationException as e:
            await self._audit.record(AuditEvent.VALIDATION_FAILED, assessment.id, {
                "request_id": request_id,
                "algorithm_version": version,
                "error_message": e.message
            })
            raise
        except Exception as e:
            self._metrics.record_failure()
            await self._audit.record(AuditEvent.TRIAGE_FAILED, assessment.id, {
                "request_id": request_id,
                "algorithm_version": version,
                "error_message": str(e)
            })
            raise

        self._metrics.record_completion(analysis)

        pm = analysis.processing_metrics
        await self._audit.record(AuditEvent.TRIAGE_COMPLETED, assessment.id, {
            "request_id": request_id,
            "algorithm_version": version,
            "model_used": pm.model_used,
            "processing_time_ms": pm.processing_time_ms,
            "confidence": analysis.confidence,
            "critical_domains": list(analysis.critical_domains),
            "enrichment_status": pm.enrichment_status,
            "fallback_reason": pm.fallback_reason
        })

        if self._exporter is not None and self._exporter.is_enabled():
            await self._exporter.export_triage_metrics(
                processing_time_ms=pm.processing_time_ms,
                cost_estimate=pm.cost_estimate,
                total_tokens=pm.token_usage.total,
                fallback=analysis.fallback_mode,
                sector=analysis.industry_context.sector,
                model=pm.model_used
            )

        return analysis
