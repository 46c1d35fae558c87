"""
Verse Library — FastAPI Application Factory
=============================================

What:  Creates and configures the FastAPI application.
How:   create_app() registers middleware, exception handlers and routes; the
       lifespan builds the services and stores them on app.state.
Who:   uvicorn (uvicorn verse_library.main:app).

Lifecycle:
    Startup:
    1. Configure logging, validate gateway configuration (warn only)
    2. Build storage, gateway, performance monitor, catalog and progress services
    3. Rehydrate the persisted library and progress records
    4. Reconcile progress with the content service (failures only logged)
    5. Register the catalog refresh with the background refresh service and start it

    Shutdown:
    1. Stop the background refresh task
    2. Close the gateway's HTTP client
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from verse_library import __version__
from verse_library.config import settings
from verse_library.exceptions import (
    CircuitBreakerOpenError,
    GatewayAuthError,
    GatewayError,
    GatewayUnavailableError,
    NotFoundError,
    StorageError,
    ValidationError,
    VerseLibraryError,
)
from verse_library.middleware.logging import RequestLoggingMiddleware
from verse_library.middleware.request_id import RequestIDMiddleware, request_id_var
from verse_library.routes import health, library, progress
from verse_library.services.background_refresh import BackgroundRefreshService
from verse_library.services.cache_storage import CacheStorage
from verse_library.services.catalog_cache import CatalogCache
from verse_library.services.http_gateway import HttpContentGateway
from verse_library.services.performance_monitor import PerformanceMonitor
from verse_library.services.progress_service import ProgressService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once at startup.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request chatter from the HTTP stack
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("Verse Library %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: the persisted catalog is still usable offline
        logger.error("Configuration error: %s", str(e))

    storage = CacheStorage()
    gateway = HttpContentGateway()
    monitor = PerformanceMonitor()
    catalog = CatalogCache(gateway=gateway, storage=storage, monitor=monitor)
    progress_service = ProgressService(gateway=gateway, catalog=catalog, storage=storage)
    background_refresh = BackgroundRefreshService(storage=storage)

    await catalog.load()
    await progress_service.load()
    await background_refresh.load_config()
    await progress_service.reconcile()

    background_refresh.register_refresh_callback(catalog.refresh_chapters)
    background_refresh.register_refresh_callback(progress_service.reconcile)
    if background_refresh.config.enabled:
        background_refresh.start()

    app.state.storage = storage
    app.state.gateway = gateway
    app.state.monitor = monitor
    app.state.catalog = catalog
    app.state.progress_service = progress_service
    app.state.background_refresh = background_refresh

    logger.info("Server ready at http://%s:%d", settings.host, settings.port)
    logger.info("=" * 60)

    yield

    logger.info("Verse Library shutting down...")
    await background_refresh.stop()
    await gateway.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map domain exceptions to HTTP responses.

    Handler hierarchy:
        ValidationError         → 400 Bad Request
        GatewayAuthError        → 401 Unauthorized
        NotFoundError           → 404 Not Found
        GatewayError            → 502 Bad Gateway
        GatewayUnavailableError → 503 Service Unavailable
        CircuitBreakerOpenError → 503 Service Unavailable (Retry-After)
        StorageError            → 500 Internal Server Error
        VerseLibraryError       → 500 Internal Server Error
        Exception (fallback)    → 500 Internal Server Error

    Response bodies never include stack traces; those are logged.
    """

    def error_body(code: str, message: str, details=None) -> dict:
        body = {"error": code, "message": message, "request_id": request_id_var.get("")}
        if details:
            body["details"] = details
        return body

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=error_body("not_found", exc.message))

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Gateway circuit open: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=503,
            content=error_body("service_unavailable", exc.message,
                               {"recovery_time": exc.recovery_time}),
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(GatewayUnavailableError)
    async def handle_gateway_unavailable(request: Request, exc: GatewayUnavailableError):
        logger.error("[%s] Gateway unavailable: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=503,
            content=error_body("service_unavailable", exc.message),
            headers={"Retry-After": str(settings.cb_recovery_timeout)},
        )

    @app.exception_handler(GatewayAuthError)
    async def handle_gateway_auth(request: Request, exc: GatewayAuthError):
        logger.warning("[%s] Gateway auth error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=401, content=error_body("unauthorized", exc.message))

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        logger.error("[%s] Gateway error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(status_code=502, content=error_body("gateway_error", exc.message))

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error("[%s] Storage error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(status_code=500, content=error_body("server_error", exc.message))

    @app.exception_handler(VerseLibraryError)
    async def handle_library_error(request: Request, exc: VerseLibraryError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return JSONResponse(status_code=500, content=error_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Verse Library API",
        description=(
            "Client-side library cache for a daily devotional reading app: "
            "TTL-cached chapter catalog, search and filter views, reading progress."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # Last added runs first: RequestID → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(library.router)
    app.include_router(progress.router)
    app.include_router(health.router)

    return app


app = create_app()
