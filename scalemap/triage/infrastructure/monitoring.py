"""
Triage Monitoring
=================

Run metrics, enrichment circuit breaker and the structured-log audit sink.

All state here belongs to the host service. The engine never reads it;
the service asks the collector whether enrichment is allowed and passes
the answer in.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any

from scalemap.config import EnrichmentStatus
from scalemap.shared.infrastructure.logging import get_logger
from scalemap.triage.application.services import IAuditSink, IMetricsCollector
from scalemap.triage.domain import TriageAnalysis, TriageConfiguration

logger = get_logger(__name__)

# Fallbacks chosen by policy; these say nothing about the reasoning model's health
POLICY_FALLBACK_REASONS = ("circuit_open", "cost_guard", "token_budget")


class CircuitState(str):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class HealthStatus(str):
    """Overall triage health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class CircuitBreaker:
    """
    Circuit breaker for the reasoning-model call.

    States:
    - CLOSED: Normal operation, enrichment allowed
    - OPEN: After N failures, runs skip enrichment for M seconds
    - HALF_OPEN: After timeout, allow one test run

    A success only decrements the failure count, so a flapping provider
    keeps the breaker near its threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        if self.state == CircuitState.HALF_OPEN:
            self._failure_count = 0
        else:
            self._failure_count = max(0, self._failure_count - 1)

        if self._failure_count == 0 and self._state != CircuitState.CLOSED:
            self._state = CircuitState.CLOSED
            logger.info("Circuit breaker closed - enrichment recovered")

    def record_failure(self) -> None:
        """Record failed request."""
        half_open = self.state == CircuitState.HALF_OPEN
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if half_open or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class SectorPerformance:
    """Smoothed per-sector run statistics."""
    average_time_ms: float
    average_confidence: float
    runs: int = 1
    domain_distribution: Dict[str, int] = field(default_factory=dict)


class TriageMetricsCollector(IMetricsCollector):
    """
    In-process triage metrics.

    Tracks exponential moving averages of processing time, token usage and
    cost, a confidence histogram in 0.1 buckets and per-sector performance,
    and owns the enrichment circuit breaker.
    """

    ALPHA = 0.1
    SECTOR_ALPHA = 0.2
    OVERRIDE_ALPHA = 0.05
    OVERRIDE_RATE_LIMIT = 0.2

    def __init__(
        self,
        config: Optional[TriageConfiguration] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._config = config or TriageConfiguration()
        self._breaker = circuit_breaker or CircuitBreaker()
        self.average_processing_time_ms = 0.0
        self.average_token_usage = 0.0
        self.average_cost = 0.0
        self.override_rate = 0.0
        self.total_runs = 0
        self.fallback_runs = 0
        self.failed_runs = 0
        self.confidence_distribution: Dict[str, int] = {}
        self.sector_performance: Dict[str, SectorPerformance] = {}

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    # ========== Recording ==========

    def allow_enrichment(self) -> bool:
        allowed = self._breaker.allow_request()
        if not allowed:
            logger.warning("Circuit breaker open, triage will skip enrichment")
        return allowed

    def record_completion(self, analysis: TriageAnalysis) -> None:
        """Fold a finished run into the averages and update the breaker."""
        pm = analysis.processing_metrics
        self.total_runs += 1

        self.average_processing_time_ms = self._ema(self.average_processing_time_ms, pm.processing_time_ms, self.ALPHA)
        self.average_token_usage = self._ema(self.average_token_usage, pm.token_usage.total, self.ALPHA)
        self.average_cost = self._ema(self.average_cost, pm.cost_estimate, self.ALPHA)

        bucket = f"{min(int(analysis.confidence * 10), 10) / 10:.1f}"
        self.confidence_distribution[bucket] = self.confidence_distribution.get(bucket, 0) + 1

        self._update_sector(analysis)
        self._check_thresholds(analysis)

        if pm.enrichment_status == EnrichmentStatus.ENRICHED:
            self._breaker.record_success()
        elif pm.fallback_reason not in POLICY_FALLBACK_REASONS:
            self.fallback_runs += 1
            self._breaker.record_failure()
        else:
            self.fallback_runs += 1

    def record_failure(self) -> None:
        self.failed_runs += 1
        self._breaker.record_failure()

    def record_override(self, assessment_id: str, original: List[str], overridden: List[str], reason: str) -> None:
        """Record a human override of the selected critical domains."""
        self.override_rate = self.override_rate * (1 - self.OVERRIDE_ALPHA) + self.OVERRIDE_ALPHA
        logger.info(
            "Triage override recorded",
            extra={
                "assessment_id": assessment_id,
                "original_domains": original,
                "overridden_domains": overridden,
                "reason": reason,
                "override_rate": round(self.override_rate, 4)
            }
        )

    # ========== Reporting ==========

    def health_status(self) -> Dict[str, Any]:
        """Health verdict with the issues behind it."""
        status = HealthStatus.HEALTHY
        issues: List[str] = []
        recommendations: List[str] = []

        if self.average_processing_time_ms > self._config.max_processing_seconds * 1000:
            issues.append(
                f"Average processing time ({self.average_processing_time_ms / 1000:.0f}s) exceeds threshold"
            )
            recommendations.append("Consider optimizing prompts or using faster models")
            status = HealthStatus.DEGRADED

        if self.average_cost > self._config.max_cost_per_triage:
            issues.append(f"Average cost ({self.average_cost:.2f}) exceeds budget")
            recommendations.append("Lower the completion budget or route to the cost-optimized model")
            status = HealthStatus.DEGRADED

        if self.average_token_usage > self._config.max_tokens_per_request:
            issues.append(f"Average token usage ({self.average_token_usage:.0f}) is high")
            recommendations.append("Reduce free-text context sent for enrichment")

        if self.override_rate > self.OVERRIDE_RATE_LIMIT:
            issues.append(f"High override rate ({self.override_rate * 100:.0f}%) indicates accuracy issues")
            recommendations.append("Review triage algorithm and industry rules")
            status = HealthStatus.CRITICAL

        if not self._breaker.allow_request():
            issues.append("Circuit breaker is open due to repeated enrichment failures")
            recommendations.append("Investigate the reasoning model provider")
            status = HealthStatus.CRITICAL

        return {"status": status, "issues": issues, "recommendations": recommendations}

    def snapshot(self) -> Dict[str, Any]:
        """Current metrics as plain data."""
        return {
            "total_runs": self.total_runs,
            "fallback_runs": self.fallback_runs,
            "failed_runs": self.failed_runs,
            "average_processing_time_ms": round(self.average_processing_time_ms, 2),
            "average_token_usage": round(self.average_token_usage, 2),
            "average_cost": round(self.average_cost, 6),
            "override_rate": round(self.override_rate, 4),
            "confidence_distribution": dict(self.confidence_distribution),
            "sector_performance": {
                sector: {
                    "average_time_ms": round(perf.average_time_ms, 2),
                    "average_confidence": round(perf.average_confidence, 4),
                    "runs": perf.runs,
                    "domain_distribution": dict(perf.domain_distribution)
                }
                for sector, perf in self.sector_performance.items()
            },
            "circuit_state": self._breaker.state,
        }

    # ========== Helpers ==========

    @staticmethod
    def _ema(current: float, value: float, alpha: float) -> float:
        return current * (1 - alpha) + value * alpha

    def _update_sector(self, analysis: TriageAnalysis) -> None:
        sector = analysis.industry_context.sector
        elapsed = analysis.processing_metrics.processing_time_ms
        perf = self.sector_performance.get(sector)

        if perf is None:
            perf = SectorPerformance(average_time_ms=elapsed, average_confidence=analysis.confidence)
            self.sector_performance[sector] = perf
        else:
            perf.average_time_ms = self._ema(perf.average_time_ms, elapsed, self.SECTOR_ALPHA)
            perf.average_confidence = self._ema(perf.average_confidence, analysis.confidence, self.SECTOR_ALPHA)
            perf.runs += 1

        for domain in analysis.critical_domains:
            perf.domain_distribution[domain] = perf.domain_distribution.get(domain, 0) + 1

    def _check_thresholds(self, analysis: TriageAnalysis) -> None:
        pm = analysis.processing_metrics
        violations = []

        if pm.processing_time_ms > self._config.max_processing_seconds * 1000:
            violations.append(f"Processing time exceeded: {pm.processing_time_ms / 1000:.0f}s")
        if pm.token_usage.total > self._config.max_tokens_per_request:
            violations.append(f"Token usage exceeded: {pm.token_usage.total}")
        if pm.cost_estimate > self._config.max_cost_per_triage:
            violations.append(f"Cost exceeded: {pm.cost_estimate:.2f}")
        if analysis.confidence < self._config.confidence_minimum:
            violations.append(f"Confidence below target: {analysis.confidence:.2f}")

        if violations:
            logger.warning(
                "Performance threshold violations",
                extra={"assessment_id": analysis.assessment_id, "violations": violations}
            )


class LoggingAuditSink(IAuditSink):
    """Audit sink writing one structured log record per event."""

    def __init__(self, logger_name: str = "scalemap.triage.audit"):
        self._logger = get_logger(logger_name)

    async def record(self, event: str, assessment_id: str, metadata: Dict[str, Any]) -> None:
        self._logger.info(
            "Triage audit event",
            extra={"audit_event": event, "assessment_id": assessment_id, **metadata}
        )
