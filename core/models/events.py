# ============================================================================
# STATUS EVENT MODEL
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core model - Job lifecycle and progress events
# PURPOSE: Payload delivered to status sinks on transitions and batches
# LAST_REVIEWED: 18 OCT 2026
# EXPORTS: StatusEvent, EventType, EventStatus, BatchInfo
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Status Event Model

A StatusEvent is emitted on every job transition and every batch
completion. Sinks receive a snapshot: later mutation of the job never
changes an event already handed out.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from core.contracts import JobStatus
from core.models.job import Job


class EventType(str, Enum):
    """Types of events that can occur during job execution."""

    # Job lifecycle
    JOB_SUBMITTED = "job_submitted"
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    JOB_PAUSED = "job_paused"
    JOB_RESUMED = "job_resumed"
    JOB_EMERGENCY_PAUSED = "job_emergency_paused"

    # Batch lifecycle
    BATCH_COMPLETED = "batch_completed"
    BATCH_RECOVERED = "batch_recovered"
    BATCH_FAILED = "batch_failed"


class EventStatus(str, Enum):
    """Status/severity of an event."""
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"
    INFO = "info"


class BatchInfo(BaseModel):
    """Batch details attached to batch events."""
    index: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    size: int = Field(..., ge=0)
    duration_ms: Optional[int] = Field(default=None, ge=0)
    recovered: bool = False


class StatusEvent(BaseModel):
    """
    A single status event for one job.

    Schema: {job_id, timestamp, status, progress, stats, errors?, batch?}
    """

    job_id: str
    event_type: EventType
    event_status: EventStatus = EventStatus.INFO
    status: JobStatus
    message: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    progress: Dict[str, Any] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)
    errors: Optional[List[Dict[str, Any]]] = None
    batch: Optional[BatchInfo] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return int(self.progress.get("completed", 0)) + int(self.progress.get("failed", 0))

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def from_job(
        cls,
        job: Job,
        event_type: EventType,
        message: str = "",
        event_status: EventStatus = EventStatus.INFO,
        batch: Optional[BatchInfo] = None,
        include_errors: bool = False,
    ) -> "StatusEvent":
        """Snapshot a job into an event (call under the job table lock)."""
        return cls(
            job_id=job.job_id,
            event_type=event_type,
            event_status=event_status,
            status=job.status,
            message=message,
            progress=job.progress.model_dump(),
            stats=job.stats.model_dump(),
            errors=(
                [e.model_dump(mode="json") for e in job.errors] if include_errors else None
            ),
            batch=batch,
            metadata={
                "results_count": len(job.results),
                "park_reason": job.park_reason,
            },
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["StatusEvent", "EventType", "EventStatus", "BatchInfo"]
