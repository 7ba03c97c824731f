"""
Vitali Backend — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the AppStore (buckets at their defaults), registers
       middleware, exception handlers and routes; the lifespan hydrates the
       store before the first request and drains it on shutdown.
Who:   uvicorn (uvicorn vitali.main:app) or the `vitali-backend` script.

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (logged, not fatal: memory mode still serves)
    3. Hydrate the state store; a configured but unreachable database
       aborts startup
    4. Expose the store on app.state.store

    Shutdown (SIGTERM / SIGINT, delivered by uvicorn):
    1. Drain every pending bucket flush
    2. Dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vitali import __version__
from vitali.config import Settings, settings as default_settings
from vitali.exceptions import NotFoundError, ValidationError, VitaliError
from vitali.middleware.logging import RequestLoggingMiddleware
from vitali.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware, request_id_var
from vitali.routes import health, messages
from vitali.store import AppStore, SnapshotBackend
from vitali.store.buckets import DEFAULT_BUCKETS, BucketSpec

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure process-wide logging once, before any other initialization.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Hydrate the state store on startup and drain it on shutdown.

    StoreConfigurationError from hydrate() propagates: uvicorn reports the
    failed startup and exits instead of serving default state.
    """
    app_settings: Settings = app.state.settings
    store: AppStore = app.state.store

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(app_settings.log_level)
    logger.info("=" * 60)
    logger.info("Vitali Backend starting up...")

    try:
        app_settings.validate_required_for_production()
    except ValueError as e:
        logger.warning("Configuration warning: %s", str(e))

    if not store.hydrated:
        try:
            await store.hydrate(
                max_attempts=app_settings.hydration_max_attempts,
                retry_wait=app_settings.hydration_retry_wait,
            )
        except VitaliError as e:
            logger.critical("State store initialization failed: %s", e.message)
            if store.backend is not None:
                await store.backend.dispose()
            raise

    logger.info(
        "State store ready: mode=%s, buckets=%d, flush debounce=%dms",
        "memory" if store.pure_memory else "postgres",
        len(store.bucket_names()),
        int(store.scheduler.quiet_period * 1000),
    )
    logger.info("Server ready at http://%s:%d", app_settings.backend_host, app_settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Vitali Backend shutting down...")
    try:
        await store.shutdown()
    except Exception as e:
        logger.error("Error flushing state store during shutdown: %s", str(e), exc_info=True)
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Handler hierarchy:
        ValidationError      → 400 Bad Request
        NotFoundError        → 404 Not Found
        VitaliError (base)   → 500 Internal Server Error
        Exception (fallback) → 500 Internal Server Error
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("Validation error: %s", exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(VitaliError)
    async def handle_app_error(request: Request, exc: VitaliError):
        rid = request_id_var.get("")
        logger.error("Application error: %s | Context: %s", exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    app_settings: Optional[Settings] = None,
    backend: Optional[SnapshotBackend] = None,
    buckets: Iterable[BucketSpec] = DEFAULT_BUCKETS,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Defaults to the module-level settings.
        backend:      Overrides the backend selected by the settings.
        buckets:      Bucket catalog to register.

    The store is built here so that `app.state.store` exists as soon as the
    app does; it holds defaults until the lifespan hydrates it.
    """
    app_settings = app_settings or default_settings

    app = FastAPI(
        title="Vitali API",
        description="Telehealth backend: triage, consultations, messaging and video calls.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.store = AppStore.from_settings(app_settings, backend=backend, buckets=buckets)

    # Middleware executes in reverse order of addition
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(messages.router)

    @app.exception_handler(404)
    async def handle_unknown_route(request: Request, exc: Exception):
        return JSONResponse(
            status_code=404,
            content={
                "error": "Not Found",
                "message": f"Route {request.method} {request.url.path} not found",
            },
        )

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn using the configured host/port."""
    import uvicorn

    uvicorn.run(
        "vitali.main:app",
        host=default_settings.backend_host,
        port=default_settings.backend_port,
    )


app = create_app()
