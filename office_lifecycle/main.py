"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from office_lifecycle import __version__
from office_lifecycle.logging_config import configure_logging, get_logger
from office_lifecycle.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Validates configuration on startup and flushes the email publisher on shutdown.
    """
    from office_lifecycle.config import get_config
    from office_lifecycle.services.email_dispatcher import get_email_dispatcher

    logger.info("service_starting", version=__version__)

    try:
        config = get_config()
        if not config.webhook_secret:
            logger.warning("webhook_secret_missing", message="Webhook deliveries will be rejected")
        if not config.cron_secret:
            logger.warning("cron_secret_missing", message="Cron trigger will be rejected")

        dispatcher = get_email_dispatcher()
        if dispatcher.is_enabled():
            logger.info("pubsub_enabled", topic=config.pubsub_topic)
        else:
            logger.info("pubsub_disabled", message="Emails will be logged and dropped")

        logger.info("service_started", status="ready")
        yield
    finally:
        logger.info("service_shutting_down")
        get_email_dispatcher().shutdown()
        logger.info("service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Registered Office Lifecycle",
        description="Subscription lifecycle engine for the registered office address service",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    allowed_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from office_lifecycle.api.admin import router as admin_router
    from office_lifecycle.api.control import clock_router
    from office_lifecycle.api.control import router as accounts_router
    from office_lifecycle.api.cron import router as cron_router
    from office_lifecycle.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)
    app.include_router(admin_router)
    app.include_router(cron_router)
    app.include_router(accounts_router)
    app.include_router(clock_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness check."""
        logger.debug("root_endpoint_called")
        return {
            "service": "registered-office-lifecycle",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from office_lifecycle.repositories.ledger_store import get_ledger_store
        from office_lifecycle.services.email_dispatcher import get_email_dispatcher

        stats = get_ledger_store().get_statistics()
        return {
            "status": "healthy",
            "pubsub": "connected" if get_email_dispatcher().is_enabled() else "disabled",
            "ledger": f"{stats['total_subscriptions']} subscriptions",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


app = create_app()
