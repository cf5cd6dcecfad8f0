# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API. Job views themselves
(JobView, JobListView) come from the job manager.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from core.config.defaults import MAX_BATCH_SIZE, MIN_BATCH_SIZE
from core.contracts import JobStatus
from core.models.record import RecordOutcome


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class JobOptionsRequest(BaseModel):
    """Optional per-job overrides."""
    batch_size: Optional[int] = Field(None, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    max_batch_retries: Optional[int] = Field(None, ge=0)
    batch_timeout_seconds: Optional[float] = Field(None, gt=0)


class JobCreate(BaseModel):
    """Request to create a new job."""
    records: List[Any] = Field(..., min_length=1, description="Ordered records to process")
    options: Optional[JobOptionsRequest] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form caller metadata (source, requester)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "records": [{"name": "alpha"}, {"name": "beta"}],
                    "options": {"batch_size": 25},
                    "metadata": {"source": "weekly-import"},
                }
            ]
        }
    }


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class EstimatedDuration(BaseModel):
    seconds: float
    formatted: str


class JobCreatedResponse(BaseModel):
    """Response for a newly submitted job."""
    job_id: str
    status: JobStatus
    total_records: int
    estimated_duration: EstimatedDuration
    message: str = "Job submitted"


class JobActionResponse(BaseModel):
    """Response for cancel / resume."""
    job_id: str
    status: Optional[JobStatus] = None
    message: str


class JobResultsResponse(BaseModel):
    """Full results of one job."""
    job_id: str
    status: JobStatus
    total: int
    results: List[RecordOutcome]


class BreakerResetResponse(BaseModel):
    name: str
    state: str
    message: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
    job_id: Optional[str] = None
