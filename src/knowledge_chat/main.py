"""Main FastAPI application for Knowledge Chat."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .api.routes import router as api_router
from .config import Settings, get_settings
from .database.connection import db_manager
from .database.migrations import create_tables
from .observability.logging import clear_log_context, configure_logging, set_log_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = app.state.settings

    # Configure structured logging
    configure_logging(
        environment=settings.environment,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    # Initialize database
    db_manager.initialize(settings.get_async_database_url())

    # Create tables if they don't exist
    await create_tables()

    # Warm up HTTP client (creates connection pool)
    from .collaborators.http_client import get_http_client
    http_client = get_http_client()

    # Per-user chat controllers
    if getattr(app.state, "controller_registry", None) is None:
        from .chat.factory import create_controller_factory
        from .chat.registry import ControllerRegistry
        app.state.controller_registry = ControllerRegistry(
            create_controller_factory(settings, db_manager.get_session_factory(), http_client),
            ttl_seconds=settings.controller_idle_ttl,
            reap_interval=settings.controller_reap_interval,
        )

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    logger.info("Environment: %s", settings.environment)
    logger.info("Database: Connected")

    yield

    # Shutdown
    logger.info("Shutting down Knowledge Chat...")

    await app.state.controller_registry.shutdown()
    logger.info("Chat controllers shut down")

    # Close database connections
    await db_manager.close()
    logger.info("Database connections closed")

    # Close HTTP client and cleanup connections
    from .collaborators.http_client import close_http_client
    await close_http_client()
    logger.info("HTTP client closed")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Knowledge chat orchestrator with per-user quotas",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.controller_registry = None

    # CORS middleware, configurable origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_log_context(request: Request, call_next):
        """Tag log records with a request id for the duration of the request."""
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        clear_log_context()
        set_log_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_log_context()
        response.headers["X-Request-ID"] = request_id
        return response

    # Include API routes
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "endpoints": {
                "health": "/health",
                "docs": "/docs" if settings.debug else "Disabled in production",
                "chat": "/api/v1/chat",
            },
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/health/live")
    async def health_live():
        """Liveness probe: process is running."""
        return {"status": "alive"}

    @app.get("/health/ready")
    async def health_ready(request: Request):
        """Readiness probe: DB reachable, registry initialized."""
        checks = {}

        try:
            from sqlalchemy import text

            from .database.connection import get_db_context
            async with get_db_context() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {str(e)}"
            return Response(
                content='{"status":"not_ready","checks":' + str(checks).replace("'", '"') + '}',
                status_code=503,
                media_type="application/json",
            )

        registry = getattr(request.app.state, "controller_registry", None)
        if registry is not None:
            checks["controllers"] = f"ok (active={registry.active_count})"
        else:
            checks["controllers"] = "not initialized"

        return {"status": "ready", "checks": checks}

    # Prometheus metrics endpoint
    if settings.enable_metrics:
        @app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from .observability.metrics import generate_metrics_text
            return PlainTextResponse(
                generate_metrics_text(),
                media_type="text/plain; version=0.0.4; charset=utf-8",
            )

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "knowledge_chat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
