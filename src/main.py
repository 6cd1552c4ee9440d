"""FastAPI application entry point.

This module initializes the FastAPI application with all routes,
middleware, and lifecycle handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from src.api.routes import (
    executions_router,
    jobs_router,
    nodes_router,
    schedules_router,
    webhooks_router,
    workflows_router,
)
from src.config import settings
from src.core.logging import configure_logging
from src.runtime import Runtime

configure_logging(settings)

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds the runtime (unless one was injected), starts the queue worker
    and scheduler, and shuts them down on exit.
    """
    # Startup
    logger.info(
        "application_starting",
        host=settings.host,
        port=settings.port,
        debug=settings.debug,
        log_level=settings.log_level,
    )

    runtime: Runtime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = await Runtime.create(settings)
        app.state.runtime = runtime

    logger.info(
        "configuration_loaded",
        redis_url=settings.get_masked_redis_url(),
        queue_mode=runtime.queue.mode,
        execution_timeout=settings.execution_timeout,
        worker_concurrency=settings.worker_concurrency,
    )

    await runtime.start()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await runtime.shutdown()


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Pre-built runtime; built during startup if None
    """
    app = FastAPI(
        title="Workflow Runtime",
        description="Workflow execution engine with durable job queue and cron scheduler",
        version=VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routes
    app.include_router(
        workflows_router,
        prefix="/api/v1/workflows",
        tags=["workflows"],
    )
    app.include_router(
        executions_router,
        prefix="/api/v1/executions",
        tags=["executions"],
    )
    app.include_router(
        jobs_router,
        prefix="/api/v1/jobs",
        tags=["jobs"],
    )
    app.include_router(
        schedules_router,
        prefix="/api/v1/schedules",
        tags=["schedules"],
    )
    app.include_router(
        nodes_router,
        prefix="/api/v1/nodes",
        tags=["nodes"],
    )
    app.include_router(
        webhooks_router,
        prefix="/api/v1",
        tags=["webhooks"],
    )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions.

        Never expose internal error details in production.
        """
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )

        if settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": detail, "error_type": "internal_error"},
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "version": VERSION}

    # Ready check endpoint (includes dependency checks)
    @app.get("/ready", tags=["health"])
    async def ready_check(request: Request) -> JSONResponse:
        """Readiness check: runtime built and queue mode known."""
        runtime: Runtime | None = getattr(request.app.state, "runtime", None)
        if runtime is None:
            logger.error("readiness_check_failed", error="runtime_not_initialized")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "error": "runtime_not_initialized"},
            )
        return JSONResponse(
            content={
                "status": "ready",
                "queue_mode": runtime.queue.mode,
                "workflows": len(runtime.store),
            },
        )

    # Instrument with OpenTelemetry
    FastAPIInstrumentor.instrument_app(app)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
