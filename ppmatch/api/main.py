"""
PPMatch - FastAPI Application
=============================

Main FastAPI application with all routes and middleware.

Run with:
    uvicorn ppmatch.api.main:app --reload

Or:
    python -m ppmatch.api.main
"""

from dotenv import load_dotenv
load_dotenv()  # Load .env file before anything else

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ppmatch.api.dependencies import ServiceContainer, get_settings
from ppmatch.api.routes import (
    capabilities_router,
    health_router,
    ingest_router,
    search_router,
    technologies_router,
)
from ppmatch.core.logging_config import RequestLoggingMiddleware, configure_logging
from ppmatch.shared.exceptions import (
    ConfigurationError,
    ConsistencyError,
    DataError,
    PPMatchException,
    ProjectContextNotFoundError,
    RankingError,
    RecordNotFoundError,
    TaxonomyError,
    TransientError,
    UnknownTechnologyError,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 2

# Most specific first
ERROR_STATUS = [
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProjectContextNotFoundError, status.HTTP_404_NOT_FOUND),
    (UnknownTechnologyError, status.HTTP_404_NOT_FOUND),
    (DataError, status.HTTP_400_BAD_REQUEST),
    (TaxonomyError, status.HTTP_400_BAD_REQUEST),
    (ConsistencyError, status.HTTP_409_CONFLICT),
    (RankingError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def error_code(exc: Exception) -> str:
    """InvalidWeightsError -> INVALID_WEIGHTS"""
    name = type(exc).__name__
    if name.endswith("Error"):
        name = name[:-len("Error")]
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()


def status_for(exc: PPMatchException) -> int:
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle.

    Initializes services on startup and waits for in-flight ingestion on shutdown.
    """
    logger.info("Starting PPMatch API...")

    settings = get_settings()
    container = ServiceContainer.get_instance()

    try:
        await container.initialize(settings)
        logger.info("✓ Services initialized")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        # Allow startup even with degraded services

    yield

    logger.info("Shutting down PPMatch API...")
    await container.shutdown()
    logger.info("✓ Shutdown complete")


# =============================================================================
# Create Application
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()
    configure_logging(log_level="DEBUG" if settings.debug else None)

    app = FastAPI(
        title=settings.api_title,
        description="""
# PPMatch API

Past-performance recommendation for proposal teams.

## Features

- **Project-context search**: rank PP records against a solicitation's requirements
- **Free-text and research search**: semantic search over PP records
- **Context selection**: best records that fit a token budget
- **Technology taxonomy**: approval workflow for extracted technologies
- **Unified capabilities**: per-technology experience rollups with narratives

## Authentication

Currently open access. Production deployments should add authentication.
        """,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Register routes
    app.include_router(health_router)
    app.include_router(search_router, prefix="/api/v1")
    app.include_router(technologies_router, prefix="/api/v1")
    app.include_router(capabilities_router, prefix="/api/v1")
    app.include_router(ingest_router, prefix="/api/v1")

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ):
        """Handle validation errors with clear messages."""
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": errors,
                "code": "VALIDATION_ERROR",
                "retryable": False,
            }
        )

    @app.exception_handler(PPMatchException)
    async def ppmatch_exception_handler(
        request: Request,
        exc: PPMatchException
    ):
        """Map domain errors to status codes."""
        status_code = status_for(exc)
        if status_code >= 500 and not exc.retryable:
            logger.exception(f"{type(exc).__name__}: {exc}")
        else:
            logger.warning(f"{type(exc).__name__}: {exc}")

        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
        return JSONResponse(
            status_code=status_code,
            content={
                "error": type(exc).__name__,
                "detail": str(exc),
                "code": error_code(exc),
                "retryable": exc.retryable,
            },
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception
    ):
        """Handle unexpected errors."""
        logger.exception(f"Unhandled error: {exc}")

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An error occurred",
                "code": "INTERNAL_ERROR",
                "retryable": False,
            }
        )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health"
        }

    return app


# Create app instance
app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "ppmatch.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info"
    )
