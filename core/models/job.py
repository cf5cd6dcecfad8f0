# ============================================================================
# JOB MODEL
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core model - Job (one multi-record automation request)
# PURPOSE: Track one job's lifecycle, progress, stats, errors and results
# LAST_REVIEWED: 18 OCT 2026
# EXPORTS: Job, JobOptions, JobProgress, JobStats, JobErrorEntry
# DEPENDENCIES: pydantic
# ============================================================================
"""
Job Model

A Job is one request to process an ordered set of records to completion
or failure. Records are split into contiguous batches that run strictly
in order against a single session.

The JobManager is the only owner of a Job: all status, progress, stats,
errors and results mutation goes through it, under its table lock.

Invariants:
- progress.completed / progress.failed never decrease
- completed + failed <= total
- stats counters never decrease
- errors and results are append-only
- created_at / started_at / completed_at are set once
- terminal jobs are never mutated again
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import ErrorKind, JobStatus
from core.errors import InvalidTransitionError
from core.models.record import RecordOutcome


# ============================================================================
# VALUE OBJECTS
# ============================================================================

class JobOptions(BaseModel):
    """Per-job options, fixed at creation."""

    batch_size: int = Field(default=50, ge=1, le=1000)
    max_batch_retries: int = Field(
        default=1,
        ge=0,
        le=1,
        description="Recovery retries per batch (never more than one)"
    )
    batch_timeout_seconds: float = Field(default=300.0, gt=0)

    model_config = {"frozen": True}


class JobProgress(BaseModel):
    """Record-level progress counters."""

    total: int = Field(..., ge=0)
    completed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @computed_field
    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return round((self.completed + self.failed) / self.total * 100)

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    def add(self, completed: int, failed: int) -> None:
        """Add processed records (counts only ever grow)."""
        if completed < 0 or failed < 0:
            raise ValueError("Progress counts cannot decrease")
        if self.processed + completed + failed > self.total:
            raise ValueError(
                f"Progress overflow: {self.processed + completed + failed} > {self.total}"
            )
        self.completed += completed
        self.failed += failed


class JobStats(BaseModel):
    """Monotonic session/recovery counters."""

    session_acquisitions: int = 0
    crash_recoveries: int = 0
    batch_retries: int = 0


class JobErrorEntry(BaseModel):
    """One entry in a job's cumulative error log."""

    batch_index: Optional[int] = None
    record: Optional[Any] = None
    kind: ErrorKind
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    recoverable: bool = False


# ============================================================================
# JOB
# ============================================================================

class Job(BaseModel):
    """
    A job instance.

    Lifecycle:
        1. Created with status=PENDING by submit()
        2. PROCESSING once the worker dequeues it
        3. COMPLETED when every batch has been merged
        4. FAILED on a non-recoverable error or a failed recovery retry
        5. CANCELLED by a client (cooperative when processing)
        6. Parked (PAUSED / RECOVERY_REQUIRED / EMERGENCY_PAUSED) until resumed
    """

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = Field(default=JobStatus.PENDING)

    records: List[Any] = Field(..., min_length=1)
    options: JobOptions = Field(default_factory=JobOptions)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    progress: JobProgress
    stats: JobStats = Field(default_factory=JobStats)
    errors: List[JobErrorEntry] = Field(default_factory=list)
    results: List[RecordOutcome] = Field(default_factory=list)

    # Index of the first batch whose outcomes are not merged yet
    next_batch_index: int = Field(default=0, ge=0)
    park_reason: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def create(
        cls,
        records: List[Any],
        options: Optional[JobOptions] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "Job":
        """Create a pending job with zeroed progress."""
        records = list(records)
        return cls(
            records=records,
            options=options or JobOptions(),
            metadata=dict(metadata or {}),
            progress=JobProgress(total=len(records)),
        )

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status.is_terminal()

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate job duration if started."""
        if not self.started_at:
            return None
        end_time = self.completed_at or datetime.utcnow()
        return (end_time - self.started_at).total_seconds()

    @computed_field
    @property
    def estimated_seconds_remaining(self) -> Optional[float]:
        """Estimate remaining time from the observed processing rate."""
        if self.status != JobStatus.PROCESSING or not self.started_at:
            return None
        processed = self.progress.processed
        if processed == 0:
            return None
        elapsed = (datetime.utcnow() - self.started_at).total_seconds()
        rate = processed / max(elapsed, 1e-6)
        return max(0.0, (self.progress.total - processed) / rate)

    @property
    def batch_count(self) -> int:
        size = self.options.batch_size
        return (len(self.records) + size - 1) // size

    def batches(self) -> List[List[Any]]:
        """Partition records into ordered batches of options.batch_size."""
        size = self.options.batch_size
        return [self.records[i:i + size] for i in range(0, len(self.records), size)]

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            PENDING -> PROCESSING, CANCELLED
            PROCESSING -> COMPLETED, FAILED, CANCELLED,
                          PAUSED, RECOVERY_REQUIRED, EMERGENCY_PAUSED
            PAUSED, RECOVERY_REQUIRED, EMERGENCY_PAUSED -> PENDING, CANCELLED
            COMPLETED, FAILED, CANCELLED -> (none, terminal)
        """
        if self.status == new_status:
            return True  # No-op is always allowed

        parked_exits = {JobStatus.PENDING, JobStatus.CANCELLED}
        allowed = {
            JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.CANCELLED},
            JobStatus.PROCESSING: {
                JobStatus.COMPLETED,
                JobStatus.FAILED,
                JobStatus.CANCELLED,
                JobStatus.PAUSED,
                JobStatus.RECOVERY_REQUIRED,
                JobStatus.EMERGENCY_PAUSED,
            },
            JobStatus.PAUSED: parked_exits,
            JobStatus.RECOVERY_REQUIRED: parked_exits,
            JobStatus.EMERGENCY_PAUSED: parked_exits,
            JobStatus.COMPLETED: set(),
            JobStatus.FAILED: set(),
            JobStatus.CANCELLED: set(),
        }

        return new_status in allowed.get(self.status, set())

    def _transition(self, new_status: JobStatus) -> None:
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(self.job_id, self.status.value, new_status.value)
        self.status = new_status
        self.updated_at = datetime.utcnow()

    def mark_processing(self) -> None:
        """Mark job as picked up by the worker."""
        self._transition(JobStatus.PROCESSING)
        if self.started_at is None:
            self.started_at = datetime.utcnow()

    def mark_completed(self) -> None:
        self._transition(JobStatus.COMPLETED)
        self.completed_at = datetime.utcnow()

    def mark_failed(self) -> None:
        self._transition(JobStatus.FAILED)
        self.completed_at = datetime.utcnow()

    def mark_cancelled(self) -> None:
        self._transition(JobStatus.CANCELLED)
        self.completed_at = datetime.utcnow()

    def mark_parked(self, status: JobStatus, reason: str) -> None:
        """Park a processing job (paused, recovery_required, emergency_paused)."""
        if not status.is_parked():
            raise ValueError(f"{status.value} is not a parked status")
        self._transition(status)
        self.park_reason = reason

    def mark_resumed(self) -> None:
        """Return a parked job to the queue."""
        if not self.status.is_parked():
            raise InvalidTransitionError(self.job_id, self.status.value, JobStatus.PENDING.value)
        self._transition(JobStatus.PENDING)
        self.park_reason = None

    # =========================================================================
    # APPEND-ONLY LOGS
    # =========================================================================

    def record_error(
        self,
        kind: ErrorKind,
        message: str,
        recoverable: bool,
        batch_index: Optional[int] = None,
        record: Optional[Any] = None,
    ) -> JobErrorEntry:
        entry = JobErrorEntry(
            batch_index=batch_index,
            record=record,
            kind=kind,
            message=message,
            recoverable=recoverable,
        )
        self.errors.append(entry)
        self.updated_at = datetime.utcnow()
        return entry

    def merge_batch(self, batch_index: int, outcomes: List[RecordOutcome]) -> None:
        """
        Append one batch's outcomes and advance progress.

        Record-level failures are added to the error log with the batch
        index so the tail shown to clients includes them.
        """
        completed = sum(1 for o in outcomes if o.succeeded)
        failed = len(outcomes) - completed
        self.progress.add(completed, failed)
        self.results.extend(outcomes)
        for outcome in outcomes:
            if not outcome.succeeded:
                self.record_error(
                    ErrorKind.RECORD_FAILURE,
                    str(outcome.detail) if outcome.detail is not None else outcome.status.value,
                    recoverable=False,
                    batch_index=batch_index,
                    record=outcome.record_ref,
                )
        self.updated_at = datetime.utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "Job",
    "JobOptions",
    "JobProgress",
    "JobStats",
    "JobErrorEntry",
]
