"""
Serve Tracker Backend — FastAPI Application Factory
=====================================================

What:  Creates and configures the FastAPI application instance.
How:   `create_app()` registers middleware, exception handlers and routes;
       the lifespan builds the service container and the local cache tables.
Who:   uvicorn (`uvicorn serve_tracker.main:app`), and tests via create_app().

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │  Middleware:  Request ID → Logging → GZip → CORS         │
    │                                                          │
    │  Routes:                                                 │
    │   /api/serve-attempts   /api/clients/{id}/serve-attempts │
    │   /api/notifications    /api/sync   /api/tasks/{id}      │
    │   /health                                                │
    │                                                          │
    │  Exception Handlers:                                     │
    │   Validation/MediaDecode→400  NotFound→404               │
    │   Upload/Notification→502     Persistence→503  else→500  │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config check → container → cache tables → reconcile schedule
    Shutdown: stop schedule → wait for background tasks → close HTTP client → dispose engine
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from serve_tracker import __version__
from serve_tracker.config import Settings, settings as default_settings
from serve_tracker.database import create_tables
from serve_tracker.dependencies import build_container
from serve_tracker.exceptions import (
    MediaDecodeError,
    NotFoundError,
    NotificationError,
    PersistenceError,
    ServeTrackerError,
    UploadError,
    ValidationError,
)
from serve_tracker.middleware.logging import RequestLoggingMiddleware
from serve_tracker.middleware.request_id import RequestIDMiddleware, request_id_var
from serve_tracker.routes import health, notifications, serve_attempts, sync

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging once for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request chatter from these libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app_settings: Settings = app.state.settings
    setup_logging(app_settings.log_level)
    logger.info("=" * 60)
    logger.info("Serve Tracker Backend %s starting up...", __version__)

    try:
        app_settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: submissions queue locally and /health reports degraded
        logger.error("Configuration error: %s", str(e))

    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(app_settings)
        app.state.container = container
    if container.engine is not None:
        await create_tables(container.engine)
    container.started_at = time.time()
    if container.reconciler is not None:
        container.reconciler.start()

    logger.info("Local cache: %s", app_settings.cache_database_url)
    logger.info("Server ready at http://%s:%d", app_settings.backend_host, app_settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Serve Tracker Backend shutting down...")
    await container.close()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy onto HTTP responses.

    Handler hierarchy:
        ValidationError, MediaDecodeError → 400
        NotFoundError                     → 404
        UploadError, NotificationError    → 502
        PersistenceError                  → 503
        ServeTrackerError (base)          → 500
        Exception (fallback)              → 500

    Only ValidationError details go back to the caller; everything else is
    logged with its context and answered with a generic message.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(MediaDecodeError)
    async def handle_media_decode_error(request: Request, exc: MediaDecodeError):
        logger.warning("[%s] Media decode error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "media_decode_error", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(UploadError)
    async def handle_upload_error(request: Request, exc: UploadError):
        logger.error("[%s] Upload error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return _error_response(502, "upload_error", exc.message)

    @app.exception_handler(NotificationError)
    async def handle_notification_error(request: Request, exc: NotificationError):
        logger.error("[%s] Notification error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return _error_response(502, "notification_error", exc.message)

    @app.exception_handler(PersistenceError)
    async def handle_persistence_error(request: Request, exc: PersistenceError):
        logger.error("[%s] Persistence error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return _error_response(
            503, "service_unavailable",
            "The document store is unavailable. Please try again later.",
        )

    @app.exception_handler(ServeTrackerError)
    async def handle_serve_tracker_error(request: Request, exc: ServeTrackerError):
        logger.error("[%s] Application error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500, "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Assemble the application.

    The service container is attached in the lifespan; tests that skip the
    lifespan set `app.state.container` themselves.
    """
    app_settings = app_settings or default_settings
    app = FastAPI(
        title="Serve Tracker API",
        description=(
            "Records serve attempts with photo evidence, persists them with a "
            "local fallback, and emails the client and the office."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = app_settings

    # Executed in reverse order of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(serve_attempts.router)
    app.include_router(notifications.router)
    app.include_router(sync.router)
    app.include_router(health.router)

    return app


app = create_app()
