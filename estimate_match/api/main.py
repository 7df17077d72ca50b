"""
FastAPI Application Entry Point
===============================

Matching service application with health check, request logging,
error mapping and lifecycle management.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator
from uuid import uuid4

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from estimate_match import __version__
from estimate_match.api.dependencies import build_state, close_state
from estimate_match.config.settings import Settings, get_settings
from estimate_match.utils.errors import EstimateMatchError, MatchValidationError
from estimate_match.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    FastAPI application factory.

    Args:
        settings: Settings override (tests); environment settings otherwise

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create shared resources on startup and release them on shutdown."""
        logger.info(
            "estimate-match service starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
        )
        app.state.engine = await build_state(settings)

        yield

        logger.info("estimate-match service shutting down")
        await close_state(app.state.engine)

    app = FastAPI(
        title="Estimate Match API",
        description=(
            "Matches supplier invoice line items to project estimate line items "
            "using learned patterns, an LLM and a deterministic similarity fallback."
        ),
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Request Logging Middleware
    # -------------------------------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next: Any) -> Any:
        """
        Log every request with timing and a correlation ID.

        Adds X-Request-ID and X-Process-Time response headers.
        """
        request_id = str(uuid4())
        start_time = time.perf_counter()

        logger.info(
            "Request received",
            request_id=request_id,
            method=request.method,
            path=str(request.url.path),
        )

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        logger.info(
            "Request completed",
            request_id=request_id,
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_ms=round(process_time * 1000, 2),
        )
        return response

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(EstimateMatchError)
    async def estimate_match_error_handler(
        request: Request, exc: EstimateMatchError
    ) -> JSONResponse:
        """Handle application-specific errors."""
        logger.error(
            "Application error",
            error_type=type(exc).__name__,
            message=exc.message,
            details=exc.details,
            path=str(request.url),
        )
        status_code = (
            status.HTTP_400_BAD_REQUEST
            if isinstance(exc, MatchValidationError)
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    # -------------------------------------------------------------------------
    # Health Check Endpoint
    # -------------------------------------------------------------------------
    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check endpoint",
        response_model=dict[str, Any],
    )
    async def health_check(request: Request) -> dict[str, Any]:
        """
        Check service health status.

        Reports the database, the result cache backend and the LLM
        provider. A failing dependency marks the service 'degraded'.
        """
        state = request.app.state.engine
        health_status: dict[str, Any] = {
            "status": "healthy",
            "version": __version__,
            "service": "estimate-match",
            "checks": {},
        }

        if state.database is not None:
            db_status = await state.database.health_check()
            health_status["checks"]["database"] = db_status
            if db_status.get("status") != "healthy":
                health_status["status"] = "degraded"
        else:
            health_status["checks"]["database"] = {"status": "not_configured"}

        if state.redis_client is not None:
            try:
                start = time.perf_counter()
                await state.redis_client.ping()
                health_status["checks"]["redis"] = {
                    "status": "healthy",
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                }
            except Exception as e:
                health_status["checks"]["redis"] = {"status": "unhealthy", "error": str(e)}
                health_status["status"] = "degraded"
        else:
            health_status["checks"]["cache"] = {"status": "healthy", "backend": "memory"}

        if settings.llm_provider == "ollama":
            try:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    response = await client.get(f"{settings.ollama_base_url}/api/tags")
                health_status["checks"]["llm"] = {
                    "status": "healthy" if response.status_code == 200 else "unhealthy",
                    "provider": "ollama",
                }
            except Exception as e:
                health_status["checks"]["llm"] = {
                    "status": "unhealthy",
                    "provider": "ollama",
                    "error": str(e),
                }
            if health_status["checks"]["llm"]["status"] != "healthy":
                health_status["status"] = "degraded"
        else:
            health_status["checks"]["llm"] = {
                "status": "healthy" if settings.llm_provider == "none" or settings.gemini_api_key else "unhealthy",
                "provider": settings.llm_provider,
            }
            if health_status["checks"]["llm"]["status"] != "healthy":
                health_status["status"] = "degraded"

        return health_status

    # -------------------------------------------------------------------------
    # Register Routers
    # -------------------------------------------------------------------------
    from estimate_match.api.routes import match_router, patterns_router

    app.include_router(match_router, prefix="/match", tags=["Matching"])
    app.include_router(patterns_router, prefix="/patterns", tags=["Patterns"])

    return app


def run() -> None:
    """Run the service with uvicorn."""
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)
