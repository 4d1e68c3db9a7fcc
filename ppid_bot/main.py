"""
PPID Assistant - Main FastAPI Application
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ppid_bot.api.routes import router as api_router
from ppid_bot.core.config import parse_csv_setting, settings
from ppid_bot.core.logging import get_logger, setup_logging
from ppid_bot.core.middleware import setup_exception_handlers, setup_middleware
from ppid_bot.domain.container import ServiceContainer, build_container
from ppid_bot.workers.scheduler import BackgroundScheduler

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME,
    log_file=settings.LOG_FILE or None,
)

logger = get_logger(__name__)

_OPENAPI_TAGS = [
    {"name": "operator", "description": "Operator console: commands, analytics and the notification stream."},
    {"name": "webhooks", "description": "Inbound messages and connection events from the WhatsApp gateway."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


def build_scheduler(container: ServiceContainer) -> BackgroundScheduler:
    """Periodic jobs, independent of message traffic."""
    scheduler = BackgroundScheduler()
    scheduler.add_job("session-sweep", settings.SWEEP_INTERVAL_SECONDS, container.sweep_sessions)
    scheduler.add_job("session-snapshot", settings.SESSION_SNAPSHOT_INTERVAL_SECONDS, container.snapshot_sessions)
    scheduler.add_job(
        "rate-limit-cleanup", settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS, container.cleanup_rate_limits
    )
    scheduler.add_job("index-refresh", settings.INDEX_REFRESH_INTERVAL_SECONDS, container.retriever.reload_if_stale)
    scheduler.add_job(
        "connection-check", settings.CONNECTION_CHECK_INTERVAL_SECONDS, container.refresh_connection
    )
    return scheduler


def create_app(container: Optional[ServiceContainer] = None, run_scheduler: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
        services: ServiceContainer = app.state.container
        await services.startup()

        scheduler = build_scheduler(services) if run_scheduler else None
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            logger.info("Shutting down application")
            if scheduler is not None:
                await scheduler.stop()
            await services.shutdown()
            logger.info("Sessions flushed to disk")

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="WhatsApp customer-service assistant for PPID BRIDA Jawa Tengah.",
        openapi_tags=_OPENAPI_TAGS,
        lifespan=lifespan,
    )
    app.state.container = container or build_container()

    # Setup middleware (correlation ID, request logging)
    setup_middleware(app)
    setup_exception_handlers(app)

    allowed_origins = parse_csv_setting(settings.ALLOWED_ORIGINS)
    if not allowed_origins and settings.DEBUG:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "OPTIONS"],
            allow_headers=["Content-Type", "X-Operator-API-Key", "X-Correlation-ID"],
        )

    app.include_router(api_router, prefix="/api")

    @app.get("/health", tags=["Health"], summary="Liveness probe")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get(
        "/health/ready",
        tags=["Health"],
        summary="Readiness probe",
        responses={503: {"description": "At least one dependency is unavailable"}},
    )
    async def readiness_check() -> JSONResponse:
        from ppid_bot.domain.services.health_service import check_readiness

        services: ServiceContainer = app.state.container
        result = await check_readiness(services.provider, services.retriever)
        status_code = 200 if result["status"] == "healthy" else 503
        return JSONResponse(content=result, status_code=status_code)

    return app


app = create_app()
