"""
FastAPI application entry point for the call analytics service.

This module configures logging, manages the database pool and schema through
the application lifespan, and registers the API routers:

- POST /events                 internal event-bus push endpoint
- POST /webhooks/vapi          voice-provider webhooks
- GET  /analytics/...          dashboard read path
- GET  /health                 liveness probe
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from call_analytics import __version__
from call_analytics.api import api_router
from call_analytics.core.database import close_db, init_db, init_schema

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize database connection pool
        - Create aggregate store tables if missing

    On shutdown:
        - Close database connection pool
    """
    # Startup
    logger.info("Call Analytics API starting")
    try:
        await init_db()
        await init_schema()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue startup; /health stays available and the pool is retried lazily

    yield

    # Shutdown
    logger.info("Call Analytics API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Call Analytics API",
    version=__version__,
    description=(
        "Real-time analytics pipeline for voice-AI calls. Ingests call-lifecycle "
        "events, derives conversation signals, accumulates template and assistant "
        "aggregates, and publishes operational alerts."
    ),
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "Call Analytics API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "call_analytics.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
