"""FastAPI application entry point with lifespan management.

@module main
@description Core application setup including routes, middleware, lifespan, and health checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.database import check_db_health, close_db, init_db
from app.middleware.metrics import MetricsMiddleware, get_metrics_response
from app.routers import migrations
from app.services import encryption

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown."""
    # Startup
    logger.info("Starting Submission Vault...")

    # Verify database connectivity (schema handled by Alembic)
    logger.info("Verifying database connection...")
    await init_db()

    if not encryption.is_configured():
        logger.warning(
            "Encryption is not configured; encryption, cleanup and user link migrations will refuse to run"
        )

    logger.info("Submission Vault started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Submission Vault...")
    await close_db()
    logger.info("Submission Vault shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Batch migration and encryption at rest for form submission PII",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Migrations", "description": "Migration status, batch execution and irreversible cleanup."},
    ],
)

if settings.METRICS_ENABLED:
    app.add_middleware(MetricsMiddleware)


# Include API routers
app.include_router(migrations.router, prefix=settings.API_V1_PREFIX, tags=["Migrations"])


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__},
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Health check endpoints
@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "version": settings.APP_VERSION}


@app.get("/metrics", tags=["monitoring"])
async def metrics_endpoint():
    """Prometheus metrics scrape target."""
    return get_metrics_response()


@app.get("/health/ready", tags=["health"])
async def readiness_check():
    """Readiness check - verifies the database and cipher configuration."""
    db_healthy = await check_db_health()
    cipher_ready = encryption.is_configured()

    if db_healthy:
        return {
            "status": "ready",
            "database": "connected",
            "encryption": "configured" if cipher_ready else "not configured",
        }

    return JSONResponse(
        status_code=503,
        content={
            "status": "not ready",
            "database": "disconnected",
            "encryption": "configured" if cipher_ready else "not configured",
        },
    )
