# ============================================================================
# BATCH ENGINE - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application hosting the job engine
# CREATED: 18 OCT 2026
# ============================================================================
"""
Batch Engine Main Application

FastAPI application that:
1. Provides HTTP API for job submission and control
2. Runs the job worker, circuit breakers and resource monitor in the background
3. Exposes liveness, readiness and health endpoints

The bundled echo provider and processor stand in for a real session
backend; deployments swap them for their own SessionProvider and
RecordProcessor.

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from __version__ import __version__, BUILD_DATE, EPOCH, CODENAME
from api.routes import router, set_engine
from orchestrator import Engine
from worker.echo import EchoSessionProvider, EchoRecordProcessor

# Health check system
from health import health_router, get_registry
from health.checks.engine import set_engine as set_health_engine

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Global instances
_engine: Engine = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds and starts the engine on startup, parks and stops it on shutdown.
    """
    global _engine

    logger.info(f"Starting {CODENAME} v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    delay = float(os.environ.get("ECHO_DELAY_PER_RECORD", "0"))
    _engine = Engine.from_env(
        EchoSessionProvider(),
        EchoRecordProcessor(delay_per_record_seconds=delay),
    )
    await _engine.start()
    logger.info("Engine started")

    set_engine(_engine)

    # Initialize health checks
    set_health_engine(_engine)
    import health.checks  # Register all health check plugins
    get_registry().mark_initialized()
    logger.info(f"Health checks initialized ({len(get_registry())} checks registered)")

    yield

    # Shutdown
    logger.info(f"Shutting down {CODENAME}...")
    await _engine.stop()
    logger.info(f"{CODENAME} stopped")


# Create FastAPI app
app = FastAPI(
    title=CODENAME,
    description=f"Epoch {EPOCH} resilient batch job engine",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include health check routes (no prefix - /livez, /readyz, /health)
app.include_router(health_router)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": CODENAME,
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running" if _engine is not None and _engine.is_running else "starting",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
