"""
InsightGen API - FastAPI Application
====================================
RESTful API for clinical question resolution.

Features:
- Question resolution (template / direct / funnel / error payloads)
- Session cache statistics and invalidation
- Clinical ontology lookup
- Query template catalog with duplicate detection
- Clarification sessions: validated answers re-enter resolution
- Clarification audit ingestion
"""

import os
import sys
import logging
from pathlib import Path
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# Add api directory to path for router imports
api_dir = Path(__file__).parent
sys.path.insert(0, str(api_dir))

load_dotenv(project_root / ".env")

from core.audit import AuditService
from core.engine.cache import BoundedTTLCache
from core.engine.clarification import ClarificationEngine
from core.engine.generation import InvalidRequestError
from core.engine.orchestrator import OrchestratorConfig, QueryOrchestrator, create_orchestrator

# Import routers
from routers import insights, ontology, templates, clarifications
from models.responses import APIResponse, ErrorDetail, MetaInfo

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Open clarification sessions kept in memory
CLARIFICATION_SESSION_LIMIT = 1000
CLARIFICATION_SESSION_TTL = 30 * 60


def attach_components(app: FastAPI, orchestrator: QueryOrchestrator,
                      clarification_audit: AuditService) -> None:
    """Expose resolution components to the routers via app.state."""
    app.state.orchestrator = orchestrator
    app.state.templates = orchestrator.templates
    app.state.ontology = orchestrator.terminology.ontology
    app.state.clarification_audit = clarification_audit
    app.state.clarification_engine = ClarificationEngine(
        audit_sink=clarification_audit,
        terminology=orchestrator.terminology,
    )
    app.state.clarification_sessions = BoundedTTLCache(
        max_size=CLARIFICATION_SESSION_LIMIT,
        ttl_seconds=CLARIFICATION_SESSION_TTL,
        name="Clarification sessions",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("InsightGen API starting up...")
    built_here = False
    if getattr(app.state, "orchestrator", None) is None:
        config = OrchestratorConfig.from_env()
        orchestrator = create_orchestrator(config)
        attach_components(app, orchestrator, AuditService(config.clarification_audit_db_path))
        built_here = True

    yield

    # Shutdown
    logger.info("InsightGen API shutting down...")
    if built_here:
        app.state.orchestrator.shutdown()
        app.state.clarification_engine.shutdown()


def create_app(orchestrator: Optional[QueryOrchestrator] = None,
               clarification_audit: Optional[AuditService] = None) -> FastAPI:
    """
    Create the FastAPI app.

    Components are built in the lifespan from environment configuration unless
    an orchestrator is passed in (tests).
    """
    app = FastAPI(
        title="InsightGen API",
        description="""
## InsightGen - Clinical Question Resolution API

- **Insights**: resolve natural-language questions to SQL results or clarifications
- **Ontology**: clinical synonym and abbreviation expansion
- **Templates**: approved query templates and duplicate detection
- **Clarifications**: clarification audit trail
""",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan
    )

    if orchestrator is not None:
        attach_components(app, orchestrator, clarification_audit or AuditService())

    # Add CORS middleware
    _cors_origins = os.getenv("CORS_ORIGINS", "http://localhost,http://localhost:8501,http://localhost:80").split(",")
    _cors_origins = [origin.strip() for origin in _cors_origins if origin.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
    )

    # ============================================
    # Include Routers
    # ============================================

    app.include_router(
        insights.router,
        prefix="/api/v1/insights",
        tags=["Insights"]
    )

    app.include_router(
        ontology.router,
        prefix="/api/v1/ontology",
        tags=["Ontology"]
    )

    app.include_router(
        templates.router,
        prefix="/api/v1/templates",
        tags=["Templates"]
    )

    app.include_router(
        clarifications.router,
        prefix="/api/v1/clarifications",
        tags=["Clarifications"]
    )

    # ============================================
    # Root Endpoints
    # ============================================

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "InsightGen API",
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
            "api_base": "/api/v1"
        }

    @app.get("/health", tags=["Root"])
    async def health():
        """Simple health check endpoint at root level."""
        return {"status": "healthy", "service": "insightgen-api"}

    # ============================================
    # Exception Handlers
    # ============================================

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        """Input validation failures are client errors, not resolution results."""
        return JSONResponse(
            status_code=400,
            content=APIResponse(
                success=False,
                error=ErrorDetail(code="INVALID_REQUEST", message=str(exc), details={"field": exc.field_name}),
                meta=MetaInfo(path=str(request.url)),
            ).model_dump()
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.exception(f"Unhandled API error: {exc}")
        return JSONResponse(
            status_code=500,
            content=APIResponse(
                success=False,
                error=ErrorDetail(code="INTERNAL_ERROR", message=str(exc)),
                meta=MetaInfo(path=str(request.url)),
            ).model_dump()
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("API_RELOAD", "true").lower() == "true"
    )
