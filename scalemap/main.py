"""
ScaleMap Triage - Main Application
===================================

Assessment triage service.

Scores a submitted multi-domain operational assessment, weights it by
industry, enriches it with one reasoning-model call and selects the
critical domains for expert agent analysis.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Engine pipeline, host service and DTOs
- Domain: Entities, value objects and scoring steps
- Infrastructure: LLM client, enrichment adapter, monitoring
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from scalemap.config import settings
from scalemap.core import ApplicationException, ConfigurationError

# Infrastructure
from scalemap.infrastructure.llm import create_llm_client

# Triage Module
from scalemap.triage.application import TriageAnalyzer, TriageService
from scalemap.triage.domain import TriageConfiguration
from scalemap.triage.infrastructure import (
    ReasoningEnrichmentClient, IndustryRuleLoader, TriageMetricsCollector, LoggingAuditSink
)
from scalemap.triage.interfaces import triage_router

# Logging and metrics
from scalemap.shared.infrastructure.logging import setup_logging, get_logger
from scalemap.shared.infrastructure.grafana import init_grafana_exporter
from scalemap.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize Grafana exporter
    3. Load industry rules
    4. Initialize LLM client
    5. Wire the triage engine and host service

    A missing LLM key leaves the service unavailable (503) instead of
    failing startup; an invalid industry rules file fails startup.
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Triage Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    exporter = init_grafana_exporter(
        host=settings.grafana_host,
        api_key=settings.grafana_api_key,
        instance_id=settings.grafana_instance_id,
        service_name=settings.app_name,
        service_version=settings.app_version,
        environment=settings.environment
    )

    config = TriageConfiguration.from_settings(settings)

    logger.info("Loading industry rules")
    rule_table = IndustryRuleLoader().load(settings.triage_industry_rules_path)

    logger.info("Initializing LLM client")
    try:
        llm_client = create_llm_client(settings)
    except ConfigurationError as e:
        logger.warning("Triage service not available - LLM not configured", extra={"error": e.message})
        llm_client = None

    triage_service = None
    if llm_client is not None:
        analyzer = TriageAnalyzer(
            ReasoningEnrichmentClient(llm_client, config),
            rule_table,
            config
        )
        triage_service = TriageService(
            analyzer,
            LoggingAuditSink(),
            TriageMetricsCollector(config),
            exporter
        )

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.llm_client = llm_client
    app.state.triage_service = triage_service

    logger.info("Triage Service started successfully", extra={
        "sectors": list(IndustryRuleLoader.summarize(rule_table)),
        "algorithm_version": config.algorithm_version
    })

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Triage Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="ScaleMap Triage API",
    description="""
    ## Assessment Triage

    Scores each business domain of an operational assessment and selects
    the 3-5 critical domains that need a deep-dive agent pass.

    **Endpoints:**
    - `POST /triage/analyze` - Triage a submitted assessment
    - `GET /triage/metrics` - Run metrics and health

    **Pipeline:** completeness check, base score, industry weighting,
    batched reasoning enrichment (with deterministic fallback), severity
    bands, cross-domain propagation, critical domain selection.
    """,
    version=settings.app_version,
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Added last runs first: correlation id must be set before request logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(triage_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "llm_client": "available",
                        "triage_service": "available",
                        "circuit_breaker": "closed"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns LLM client availability and the triage health verdict.
    """
    service = getattr(request.app.state, "triage_service", None)
    checks = {
        "llm_client": "available" if getattr(request.app.state, "llm_client", None) else "not_configured",
        "triage_service": "available" if service else "not_configured",
    }

    status = "healthy"
    if service is None:
        status = "degraded"
    else:
        checks["circuit_breaker"] = service.metrics.circuit_breaker.state
        status = service.metrics.health_status()["status"]

    return {
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "ScaleMap Triage",
        "version": settings.app_version,
        "architecture": "Clean Architecture",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "triage": {
                "prefix": "/triage",
                "endpoints": [
                    "POST /triage/analyze - Triage an assessment",
                    "GET /triage/metrics - Get triage metrics"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "scalemap.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
