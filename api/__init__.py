# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for job submission and control
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the batch engine.
"""

from .routes import router, set_engine
from .schemas import (
    JobCreate,
    JobCreatedResponse,
    JobActionResponse,
    JobResultsResponse,
)

__all__ = [
    "router",
    "set_engine",
    "JobCreate",
    "JobCreatedResponse",
    "JobActionResponse",
    "JobResultsResponse",
]
