# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for job submission, query and control
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Routes

Thin HTTP surface over the engine. Mounted under /api/v1 by main.py.

Status codes:
    404 - unknown job or breaker
    409 - action not allowed in the job's current state
    422 - request validation (FastAPI)
    400 - job validation rejected by the job manager
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from core.errors import JobValidationError
from orchestrator.job_manager import JobActionResult, JobListView, JobView
from orchestrator.runtime import Engine
from .schemas import (
    BreakerResetResponse,
    ErrorResponse,
    EstimatedDuration,
    JobActionResponse,
    JobCreate,
    JobCreatedResponse,
    JobResultsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# Set by the main app at startup

_engine: Engine = None


def set_engine(engine: Engine) -> None:
    """Set the engine instance used by the routes."""
    global _engine
    _engine = engine


def get_engine() -> Engine:
    if _engine is None:
        raise HTTPException(500, "Engine not initialized")
    return _engine


def _action_response(result: JobActionResult) -> JobActionResponse:
    if result.not_found:
        raise HTTPException(404, f"Job not found: {result.job_id}")
    if not result.ok:
        raise HTTPException(409, result.reason)
    return JobActionResponse(job_id=result.job_id, status=result.status, message=result.reason)


# ============================================================================
# JOBS
# ============================================================================

@router.post(
    "/jobs",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["Jobs"],
    responses={400: {"model": ErrorResponse, "description": "Invalid job"}},
)
async def create_job(request: JobCreate):
    """
    Submit a job.

    Returns immediately with the job ID and a duration estimate.
    Poll GET /jobs/{job_id} to monitor progress.
    """
    engine = get_engine()
    options = request.options.model_dump(exclude_none=True) if request.options else None

    try:
        job_id = await engine.jobs.submit(request.records, options, request.metadata)
    except JobValidationError as e:
        raise HTTPException(400, str(e))

    view = engine.jobs.status(job_id)
    estimate = engine.jobs.estimate_duration(
        len(request.records), batch_size=view.options.batch_size
    )
    logger.info(f"Created job {job_id} with {len(request.records)} records")

    return JobCreatedResponse(
        job_id=job_id,
        status=view.status,
        total_records=len(request.records),
        estimated_duration=EstimatedDuration(
            seconds=estimate,
            formatted=engine.jobs.format_duration(estimate),
        ),
    )


@router.get("/jobs", response_model=JobListView, tags=["Jobs"])
async def list_jobs():
    """List all jobs with queue information."""
    return get_engine().jobs.list_jobs()


@router.get(
    "/jobs/{job_id}",
    response_model=JobView,
    tags=["Jobs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_job(job_id: str):
    """Job status with the most recent errors and a sample of results."""
    view = get_engine().jobs.status(job_id)
    if view is None:
        raise HTTPException(404, f"Job not found: {job_id}")
    return view


@router.get(
    "/jobs/{job_id}/results",
    response_model=JobResultsResponse,
    tags=["Jobs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_job_results(job_id: str):
    """Full per-record results."""
    jobs = get_engine().jobs
    view = jobs.status(job_id)
    results = jobs.results(job_id)
    if view is None or results is None:
        raise HTTPException(404, f"Job not found: {job_id}")
    return JobResultsResponse(
        job_id=job_id,
        status=view.status,
        total=len(results),
        results=results,
    )


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=JobActionResponse,
    tags=["Jobs"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_job(job_id: str):
    """
    Cancel a job.

    Pending and paused jobs are cancelled immediately; a processing job
    stops after its current batch.
    """
    result = await get_engine().jobs.cancel(job_id)
    return _action_response(result)


@router.post(
    "/jobs/{job_id}/resume",
    response_model=JobActionResponse,
    tags=["Jobs"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def resume_job(job_id: str):
    """Re-queue a paused job; it continues at its next unfinished batch."""
    result = await get_engine().jobs.resume(job_id)
    return _action_response(result)


# ============================================================================
# CIRCUIT BREAKERS
# ============================================================================

@router.get("/circuit-breakers", tags=["Resources"])
async def list_circuit_breakers() -> Dict[str, Any]:
    """Metrics for every circuit breaker."""
    return get_engine().breakers.metrics()


@router.post(
    "/circuit-breakers/{name}/reset",
    response_model=BreakerResetResponse,
    tags=["Resources"],
    responses={404: {"model": ErrorResponse}},
)
async def reset_circuit_breaker(name: str):
    """Force a breaker back to CLOSED (statistics are kept)."""
    breaker = get_engine().breakers.find(name)
    if breaker is None:
        raise HTTPException(404, f"Circuit breaker not found: {name}")
    breaker.reset(reason="manual reset via API")
    logger.warning(f"Circuit breaker {name} reset via API")
    return BreakerResetResponse(
        name=name,
        state=breaker.state.value,
        message="Circuit breaker reset",
    )


# ============================================================================
# RESOURCES
# ============================================================================

@router.get("/resources", tags=["Resources"])
async def get_resources() -> Dict[str, Any]:
    """Session, memory and breaker state plus job counters."""
    engine = get_engine()
    resources = engine.resources()
    resources["jobs"] = engine.jobs.stats
    return resources
