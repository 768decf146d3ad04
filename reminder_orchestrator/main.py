"""Main FastAPI application for the Payment Reminder Orchestrator."""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from reminder_orchestrator.api.cron import router as cron_router
from reminder_orchestrator.api.health import router as health_router
from reminder_orchestrator.api.settings import router as settings_router
from reminder_orchestrator.api.webhooks import router as webhooks_router
from reminder_orchestrator.core.config import Settings, get_settings
from reminder_orchestrator.core.dependencies import ServiceContainer
from reminder_orchestrator.core.exceptions import BaseAPIException
from reminder_orchestrator.core.logging import get_correlation_id, setup_logging
from reminder_orchestrator.core.middleware import CorrelationIDMiddleware

logger = structlog.get_logger(__name__)


def create_app(config: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        config: Settings to use (defaults to the global settings)
        container: Pre-built service container; when omitted one is built
            from ``config`` at startup and closed at shutdown
    """
    config = config or (container.config if container else get_settings())
    setup_logging(
        log_level=config.log_level,
        service_name=config.service_name,
        service_version=config.service_version,
        environment=config.environment,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_container = getattr(app.state, "container", None) is None
        if owns_container:
            app.state.container = ServiceContainer.from_settings(config)
        app.state.start_time = time.time()
        logger.info("Starting Payment Reminder Orchestrator", version=config.service_version)

        yield

        logger.info("Shutting down Payment Reminder Orchestrator")
        if owns_container:
            await app.state.container.close()

    app = FastAPI(
        title="Payment Reminder Orchestrator",
        description="Schedules and dispatches SMS and voice payment reminders for unpaid invoices",
        version=config.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container
        app.state.start_time = time.time()

    app.add_middleware(CorrelationIDMiddleware)

    if config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        correlation_id = get_correlation_id()
        if correlation_id:
            exc.correlation_id = correlation_id
        logger.info(
            "Request rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error_code=exc.error_code,
            detail=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)

    app.include_router(webhooks_router)
    app.include_router(cron_router)
    app.include_router(settings_router)
    app.include_router(health_router, prefix="/api/v1", tags=["health"])

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "reminder_orchestrator.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
