"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from cabinet_portal import __version__
from cabinet_portal.config import get_settings
from cabinet_portal.database import init_db, close_db, get_db_context
from cabinet_portal.core.redis_client import get_redis, close_redis
from cabinet_portal.services.registry import ServiceRegistry
from cabinet_portal.api import api_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Cabinet Portal sync API...")

    await init_db()
    logger.info("Database initialized")

    # One registry, hence one health cache, per process
    app.state.services = ServiceRegistry.build(settings)

    yield

    # Shutdown
    logger.info("Shutting down Cabinet Portal sync API...")

    await close_db()
    await close_redis()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Cabinet Portal Sync API",
    description="OneDrive and Google Calendar synchronization for the cabinet portal",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# Include API routes
app.include_router(api_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Liveness check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


# Ready check endpoint
@app.get("/ready")
async def ready_check():
    """Readiness check endpoint."""
    try:
        redis = await get_redis()
        await redis.ping()

        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))

        return {
            "status": "ready",
            "redis": "connected",
            "database": "connected",
        }
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "error": str(e),
            },
        )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cabinet_portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
