"""SinoUS Pulse backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_logging MUST run before all other sinopulse imports
# (structlog caches the processor chain on first use).
from sinopulse.core.logging import configure_logging
from sinopulse.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_logging(
    log_level="DEBUG" if _early_settings.debug else _early_settings.log_level,
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sinopulse.api.routes import api_router
from sinopulse.core.config import get_settings
from sinopulse.middleware.correlation import get_correlation_id, setup_correlation_middleware
from sinopulse.services.comparison_service import ComparisonService

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the comparison service on startup, drain write-backs on shutdown."""
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    try:
        signal.signal(signal.SIGTERM, handle_sigterm)
    except ValueError:
        # signal handlers can only be installed from the main thread (TestClient runs elsewhere)
        logger.debug("sigterm_handler_skipped", reason="not_main_thread")

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    if getattr(app.state, "comparison_service", None) is None:
        app.state.comparison_service = ComparisonService.from_settings(settings)
    logger.info(
        "comparison_service_initialized",
        bucket_configured=bool(settings.r2_bucket_name),
        public_reads=bool(settings.public_base_url),
        generation_backend=settings.generation_backend,
    )

    yield

    logger.info("shutdown_begin")
    # Pending write-backs get a chance to land; anything still failing is abandoned
    await app.state.comparison_service.aclose()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(comparison_service: ComparisonService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        comparison_service: Pre-built service (tests); built from settings when None
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="USA / China metric comparisons with an archived read-through cache",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.comparison_service = comparison_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sinopulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
