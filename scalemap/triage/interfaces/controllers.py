"""
Triage Controllers (API Routes)
================================

FastAPI routes for assessment triage endpoints.

Controllers delegate to application services.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from scalemap.core import MalformedAssessmentError, InsufficientDataError
from scalemap.triage.application import (
    TriageService, AnalyzeRequest, TriageAnalysisResponse, MetricsResponse
)
from scalemap.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Assessment Triage"])


# ========== Example payloads for Swagger ==========

ANALYZE_REQUEST_EXAMPLE = {
    "assessmentId": "assess-001",
    "companyName": "Acme Payments",
    "industryClassification": {
        "sector": "financial-services",
        "regulatoryClassification": "heavily-regulated"
    },
    "domainResponses": {
        "risk-compliance": {"questions": {"q1": 4, "q2": 5, "q3": "No formal audit trail"}},
        "financial-management": {"questions": {"q1": 4, "q2": 4}},
        "strategic-alignment": {"questions": {"q1": 2, "q2": 3}}
    }
}

ANALYZE_RESPONSE_EXAMPLE = {
    "assessmentId": "assess-001",
    "domainScores": {
        "risk-compliance": {
            "score": 5.0,
            "confidence": 0.85,
            "severity": "critical",
            "priorityLevel": "CRITICAL",
            "agentActivation": "REQUIRED",
            "reasoning": "No audit trail in a heavily regulated sector.",
            "criticalFactors": ["missing audit trail"],
            "crossDomainImpacts": ["financial-management"],
            "baseScore": 4.5,
            "industryMultiplier": 1.4
        }
    },
    "criticalDomains": ["risk-compliance", "financial-management", "strategic-alignment"],
    "confidence": 0.81,
    "reasoning": "Industry context: financial-services (heavily-regulated); ...",
    "processingMetrics": {
        "processingTime": 4210,
        "modelUsed": "gpt-4o-mini",
        "tokenUsage": {"prompt": 1200, "completion": 600, "total": 1800, "estimated": False},
        "costEstimate": 0.000432,
        "enrichmentStatus": "enriched",
        "enrichmentAttempts": 1,
        "fallbackReason": None,
        "algorithmVersion": "1.0.0"
    }
}


# ========== Dependencies ==========

def get_triage_service(request: Request) -> TriageService:
    """Get triage service from app state."""
    service = getattr(request.app.state, "triage_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Triage service not initialized"
        )
    return service


# ========== Route Handlers ==========

@router.post(
    "/analyze",
    response_model=TriageAnalysisResponse,
    summary="Triage a submitted assessment",
    description="""
    Score every answered business domain of an assessment and select the
    3-5 critical domains that need a deep-dive agent pass.

    - Domains below the completeness threshold are listed in `skippedDomains`
    - Scores are weighted by the industry classification when one is given
    - When the reasoning model is unavailable the result is built from
      deterministic base scores and `processingMetrics.fallbackReason` says why
    """,
    responses={
        200: {
            "description": "Assessment triaged",
            "content": {"application/json": {"example": ANALYZE_RESPONSE_EXAMPLE}}
        },
        400: {"description": "Assessment has no domain responses"},
        422: {"description": "No domain reaches the completeness threshold, or invalid body"},
        503: {"description": "Triage service not initialized"}
    }
)
async def analyze_assessment(
    request: Request,
    payload: AnalyzeRequest,
    service: TriageService = Depends(get_triage_service)
):
    correlation_id = getattr(request.state, "correlation_id", None)

    logger.info(
        "Triaging assessment",
        extra={
            "correlation_id": correlation_id,
            "assessment_id": payload.assessment_id,
            "domain_count": len(payload.domain_responses or {})
        }
    )

    try:
        analysis = await service.perform_triage(payload.to_domain(), request_id=correlation_id)
    except MalformedAssessmentError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "MalformedAssessment", "message": e.message}
        )
    except InsufficientDataError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": "InsufficientData",
                "message": e.message,
                "threshold": e.threshold,
                "completeness": e.completeness,
                "skippedDomains": e.skipped_domains
            }
        )

    return TriageAnalysisResponse.from_domain(analysis)


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Get triage metrics and health",
    description="Smoothed run metrics, confidence distribution, per-sector performance and health status."
)
async def get_metrics(service: TriageService = Depends(get_triage_service)):
    collector = service.metrics
    return MetricsResponse(metrics=collector.snapshot(), health=collector.health_status())
