# ============================================================================
# JOB MANAGER
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Job table, FIFO queue and the single batch worker
# PURPOSE: Drive jobs batch by batch through one session, recovering crashes
# CREATED: 18 OCT 2026
# ============================================================================
"""
Job Manager

Owns the in-memory job table and the FIFO queue, and runs the single
worker task that executes one job at a time.

Worker loop per job:
1. Transition to PROCESSING, emit job_started
2. Acquire a session (circuit open -> PAUSED, exhaustion -> EMERGENCY_PAUSED,
   anything else -> FAILED)
3. Run batches strictly in order from next_batch_index; merge outcomes,
   touch the session, emit batch_completed, wait inter_batch_delay
4. On batch failure classify the error:
   - not recoverable -> FAILED (partial results kept)
   - recoverable -> release the session, back off, re-acquire and retry
     the batch ONCE (only records without a committed outcome are replayed)
   - retry failed -> FAILED with both errors recorded
   - re-acquisition blocked by the breaker -> RECOVERY_REQUIRED
5. Release the session exactly once, settle, emit the final event

Cancellation of a processing job is cooperative: the in-flight batch
finishes and the loop stops before the next one. Emergency pause works the
same way but skips any recovery retry.

Concurrency:
    All job table and queue mutation happens under one threading.Lock.
    The lock is never held across an await or a call into another
    component; events are snapshotted under the lock and published after.

Usage:
    manager = JobManager(session_manager, processor, config=config.jobs,
                         status_sink=sink)
    await manager.start()
    job_id = await manager.submit(records, {"batch_size": 25})
    view = manager.status(job_id)
"""

import asyncio
import logging
import math
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field, ValidationError

from core.config import JobDefaults
from core.contracts import BreakerEventKind, CircuitState, ErrorKind, JobStatus, ThresholdKind
from core.errors import JobValidationError
from core.logging import log_checkpoint, log_context
from core.models.events import BatchInfo, EventStatus, EventType, StatusEvent
from core.models.job import Job, JobErrorEntry, JobOptions, JobProgress, JobStats
from core.models.record import RecordOutcome
from infrastructure.circuit_breaker import BreakerEvent
from infrastructure.resource_monitor import MonitorEvent
from infrastructure.session_manager import SessionManager
from services.error_classifier import ClassifiedError, ErrorContext, classify, retry_delay_ms
from services.status_sink import StatusSink
from worker.checkpoint import BatchCheckpoint
from worker.contracts import RecordProcessor, SessionHandle
from worker.executor import BatchAttempt, BatchExecutor

logger = logging.getLogger(__name__)

# Park reasons
PARK_CIRCUIT_OPEN = "circuit_open"
PARK_MEMORY_EXHAUSTION = "memory_exhaustion"
PARK_RECOVERY_BLOCKED = "recovery_blocked"
PARK_SHUTDOWN = "shutdown"

# How much of the error log and results a status view carries
VIEW_ERROR_TAIL = 5
VIEW_RESULT_SAMPLE = 3

_SETTLE_EVENTS = {
    JobStatus.COMPLETED: (EventType.JOB_COMPLETED, EventStatus.SUCCESS, "jobs_completed"),
    JobStatus.FAILED: (EventType.JOB_FAILED, EventStatus.FAILURE, "jobs_failed"),
    JobStatus.CANCELLED: (EventType.JOB_CANCELLED, EventStatus.WARNING, "jobs_cancelled"),
    JobStatus.PAUSED: (EventType.JOB_PAUSED, EventStatus.WARNING, "jobs_paused"),
    JobStatus.RECOVERY_REQUIRED: (EventType.JOB_PAUSED, EventStatus.WARNING, "jobs_paused"),
    JobStatus.EMERGENCY_PAUSED: (
        EventType.JOB_EMERGENCY_PAUSED, EventStatus.WARNING, "jobs_paused"
    ),
}


# ============================================================================
# VIEWS AND RESULTS
# ============================================================================

class JobView(BaseModel):
    """Point-in-time snapshot of one job for clients."""

    job_id: str
    status: JobStatus
    progress: JobProgress
    stats: JobStats
    options: JobOptions
    metadata: Dict[str, Any] = Field(default_factory=dict)
    park_reason: Optional[str] = None
    next_batch_index: int = 0
    batch_count: int = 0
    error_count: int = 0
    recent_errors: List[JobErrorEntry] = Field(default_factory=list)
    sample_results: List[RecordOutcome] = Field(default_factory=list)
    results_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    estimated_seconds_remaining: Optional[float] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobView":
        """Snapshot a job (call under the job table lock)."""
        return cls(
            job_id=job.job_id,
            status=job.status,
            progress=job.progress.model_copy(),
            stats=job.stats.model_copy(),
            options=job.options,
            metadata=dict(job.metadata),
            park_reason=job.park_reason,
            next_batch_index=job.next_batch_index,
            batch_count=job.batch_count,
            error_count=len(job.errors),
            recent_errors=[e.model_copy() for e in job.errors[-VIEW_ERROR_TAIL:]],
            sample_results=list(job.results[:VIEW_RESULT_SAMPLE]),
            results_count=len(job.results),
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            duration_seconds=job.duration_seconds,
            estimated_seconds_remaining=job.estimated_seconds_remaining,
        )


class JobSummary(BaseModel):
    """One row of the job list."""

    job_id: str
    status: JobStatus
    progress: JobProgress
    error_count: int = 0
    park_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class JobListView(BaseModel):
    """All known jobs plus queue state."""

    jobs: List[JobSummary] = Field(default_factory=list)
    total: int = 0
    pending_in_queue: int = 0
    is_processing: bool = False
    active_job_id: Optional[str] = None


@dataclass
class JobActionResult:
    """Outcome of cancel() / resume()."""
    ok: bool
    job_id: str
    status: Optional[JobStatus] = None
    reason: str = ""
    not_found: bool = False


@dataclass
class _ActiveRun:
    """Worker-side state of the job being processed."""
    job: Job
    session: Optional[SessionHandle] = None
    cancel_requested: bool = False
    emergency_reason: Optional[str] = None
    recoveries: int = 0
    # Batch in flight; its commits are carried if the run is interrupted
    checkpoint: Optional[BatchCheckpoint] = None


def format_duration(seconds: Union[int, float]) -> str:
    """Render seconds as "1h 2m 3s", "4m 5s" or "6s"."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# ============================================================================
# JOB MANAGER
# ============================================================================

class JobManager:
    """
    In-memory job scheduler with a single batch worker.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        record_processor: RecordProcessor,
        config: Optional[JobDefaults] = None,
        status_sink: Optional[StatusSink] = None,
        classifier: Callable[..., ClassifiedError] = classify,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.session_manager = session_manager
        self.config = config or JobDefaults()
        self.status_sink = status_sink
        self._executor = BatchExecutor(record_processor)
        self._classify = classifier
        self._sleep = sleep

        self._lock = threading.Lock()
        self._jobs: "OrderedDict[str, Job]" = OrderedDict()
        self._queue: Deque[str] = deque()
        self._active: Optional[_ActiveRun] = None
        # Checkpoints of batches interrupted by a park, keyed by job id
        self._checkpoints: Dict[str, BatchCheckpoint] = {}

        self._counters: Dict[str, int] = {
            "jobs_submitted": 0,
            "jobs_completed": 0,
            "jobs_failed": 0,
            "jobs_cancelled": 0,
            "jobs_paused": 0,
            "batches_processed": 0,
            "batch_recoveries": 0,
            "events_dropped": 0,
        }

        self._worker_task: Optional[asyncio.Task] = None
        self._gc_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._stopped = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the cleanup task and drain anything already queued."""
        self._stopped = False
        self._stop_event.clear()
        if self._gc_task is None or self._gc_task.done():
            self._gc_task = asyncio.create_task(self._gc_loop(), name="job-gc")
        logger.info(
            f"Job manager started: batch_size={self.config.batch_size}, "
            f"batch_timeout={self.config.batch_timeout_seconds:g}s, "
            f"retention={self.config.retention_seconds:g}s"
        )
        self._ensure_worker()

    async def stop(self) -> None:
        """
        Stop the worker and cleanup tasks.

        The active job is parked; commits of its in-flight batch are kept
        so a resume does not submit those records again.
        """
        self._stopped = True
        self._stop_event.set()

        run = self._active
        for task in (self._worker_task, self._gc_task, *self._background):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._worker_task = None
        self._gc_task = None
        self._background.clear()

        if run is not None:
            if run.job.status == JobStatus.PROCESSING:
                self._carry(run.job, run.checkpoint)
            await self._release(run, "shutdown")
            with self._lock:
                if run.job.status == JobStatus.PROCESSING:
                    run.job.mark_parked(JobStatus.PAUSED, PARK_SHUTDOWN)
                    self._counters["jobs_paused"] += 1
                    logger.warning(f"Job {run.job.job_id[:8]} paused by shutdown")
                self._active = None
        logger.info("Job manager stopped")

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the queue is drained and no job is processing.

        Returns:
            False if the timeout expired first
        """
        async def _drain() -> None:
            while True:
                task = self._worker_task
                if task is None or task.done():
                    with self._lock:
                        idle = not self._queue
                    if idle or self._stopped:
                        return
                    self._ensure_worker()
                    continue
                await asyncio.wait({task})

        try:
            await asyncio.wait_for(_drain(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _ensure_worker(self) -> None:
        """Start the worker task unless one is running."""
        if self._stopped:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; worker starts on next submit")
            return
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = loop.create_task(self._run_worker_loop(), name="job-worker")

    # =========================================================================
    # CLIENT OPERATIONS
    # =========================================================================

    async def submit(
        self,
        records: List[Any],
        options: Optional[Union[JobOptions, Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Create a job and queue it.

        Raises:
            JobValidationError: records empty or not a list, bad options
        """
        if not isinstance(records, (list, tuple)) or len(records) == 0:
            raise JobValidationError("records must be a non-empty list")
        job_options = self._resolve_options(options)
        job = Job.create(records, job_options, metadata)

        with self._lock:
            self._jobs[job.job_id] = job
            self._queue.append(job.job_id)
            self._counters["jobs_submitted"] += 1
            queued = len(self._queue)
            event = StatusEvent.from_job(
                job, EventType.JOB_SUBMITTED,
                message=f"Job submitted with {len(job.records)} records",
            )

        logger.info(
            f"Job {job.job_id[:8]} submitted: {len(job.records)} records, "
            f"batch_size={job_options.batch_size}, queue depth {queued}"
        )
        await self._publish(event)
        self._ensure_worker()
        return job.job_id

    def _resolve_options(
        self, options: Optional[Union[JobOptions, Dict[str, Any]]]
    ) -> JobOptions:
        if isinstance(options, JobOptions):
            return options
        data: Dict[str, Any] = {
            "batch_size": self.config.batch_size,
            "max_batch_retries": self.config.max_batch_retries,
            "batch_timeout_seconds": self.config.batch_timeout_seconds,
        }
        if options:
            if not isinstance(options, dict):
                raise JobValidationError("options must be a mapping")
            data.update({k: v for k, v in options.items() if v is not None})
        try:
            data["max_batch_retries"] = max(0, min(int(data["max_batch_retries"]), 1))
            return JobOptions(**data)
        except (ValidationError, TypeError, ValueError) as e:
            raise JobValidationError(f"Invalid job options: {e}") from e

    def status(self, job_id: str) -> Optional[JobView]:
        with self._lock:
            job = self._jobs.get(job_id)
            return JobView.from_job(job) if job else None

    def results(self, job_id: str) -> Optional[List[RecordOutcome]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return list(job.results) if job else None

    async def cancel(self, job_id: str) -> JobActionResult:
        """
        Cancel a job.

        Pending and parked jobs are cancelled immediately. A processing job
        stops before its next batch.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return JobActionResult(False, job_id, reason="Job not found", not_found=True)
            if job.is_terminal:
                return JobActionResult(
                    False, job_id, job.status,
                    reason=f"Job already {job.status.value}",
                )
            if job.status == JobStatus.PROCESSING:
                run = self._active
                if run is not None and run.job is job:
                    run.cancel_requested = True
                return JobActionResult(
                    True, job_id, job.status,
                    reason="Cancellation requested; job stops after the current batch",
                )

            if job.status == JobStatus.PENDING and job_id in self._queue:
                self._queue.remove(job_id)
            checkpoint = self._checkpoints.pop(job_id, None)
            if checkpoint is not None and checkpoint.committed_count:
                job.merge_batch(checkpoint.batch_index, checkpoint.committed_outcomes())
            job.mark_cancelled()
            self._counters["jobs_cancelled"] += 1
            event = StatusEvent.from_job(
                job, EventType.JOB_CANCELLED, "Job cancelled",
                EventStatus.WARNING, include_errors=True,
            )

        logger.info(f"Job {job_id[:8]} cancelled")
        await self._publish(event)
        return JobActionResult(True, job_id, JobStatus.CANCELLED, reason="Job cancelled")

    async def resume(self, job_id: str) -> JobActionResult:
        """Re-queue a parked job; it continues at its next unmerged batch."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return JobActionResult(False, job_id, reason="Job not found", not_found=True)
            if not job.status.is_parked():
                return JobActionResult(
                    False, job_id, job.status,
                    reason=f"Job is {job.status.value}; only parked jobs can be resumed",
                )
            event = self._requeue(job, "Job resumed")

        logger.info(f"Job {job_id[:8]} resumed at batch {job.next_batch_index}")
        await self._publish(event)
        self._ensure_worker()
        return JobActionResult(True, job_id, JobStatus.PENDING, reason="Job resumed")

    def _requeue(self, job: Job, message: str) -> StatusEvent:
        """Parked -> PENDING at the queue tail (call under the lock)."""
        job.mark_resumed()
        self._queue.append(job.job_id)
        return StatusEvent.from_job(job, EventType.JOB_RESUMED, message)

    def list_jobs(self) -> JobListView:
        with self._lock:
            summaries = [
                JobSummary(
                    job_id=job.job_id,
                    status=job.status,
                    progress=job.progress.model_copy(),
                    error_count=len(job.errors),
                    park_reason=job.park_reason,
                    created_at=job.created_at,
                    completed_at=job.completed_at,
                )
                for job in self._jobs.values()
            ]
            active = self._active
            return JobListView(
                jobs=summaries,
                total=len(summaries),
                pending_in_queue=len(self._queue),
                is_processing=active is not None,
                active_job_id=active.job.job_id if active else None,
            )

    def cleanup_old_jobs(self, max_age_seconds: Optional[float] = None) -> int:
        """Remove terminal jobs that finished longer ago than the retention window."""
        max_age = self.config.retention_seconds if max_age_seconds is None else max_age_seconds
        cutoff = datetime.utcnow() - timedelta(seconds=max_age)
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
                self._checkpoints.pop(job_id, None)
        if expired:
            logger.info(f"Cleaned up {len(expired)} finished job(s)")
        return len(expired)

    def estimate_duration(self, record_count: int, batch_size: Optional[int] = None) -> float:
        """Expected seconds to process record_count records."""
        if record_count <= 0:
            return 0.0
        size = batch_size or self.config.batch_size
        batches = math.ceil(record_count / size)
        return (
            record_count * self.config.seconds_per_record
            + max(0, batches - 1) * self.config.inter_batch_delay_seconds
        )

    format_duration = staticmethod(format_duration)

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            counters = dict(self._counters)
            counters["jobs_total"] = len(self._jobs)
            counters["queue_depth"] = len(self._queue)
            return counters

    @property
    def is_processing(self) -> bool:
        return self._active is not None

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def emergency_pause(self, reason: str) -> Optional[str]:
        """
        Flag the active job for an emergency pause.

        The worker parks it as EMERGENCY_PAUSED once the in-flight batch
        settles. Returns the flagged job id, if any.
        """
        with self._lock:
            run = self._active
            if run is None or run.job.status != JobStatus.PROCESSING:
                return None
            run.emergency_reason = reason
            job_id = run.job.job_id
        logger.error(f"Emergency pause requested for job {job_id[:8]}: {reason}")
        return job_id

    def on_monitor_event(self, event: MonitorEvent) -> None:
        """Resource monitor listener: exhaustion pauses active processing."""
        if event.kind == ThresholdKind.EXHAUSTION:
            self.emergency_pause(
                f"memory exhaustion: {event.rss_mb:.0f}MB > {event.threshold_mb:.0f}MB"
            )

    def on_breaker_event(self, event: BreakerEvent) -> None:
        """
        Circuit breaker listener.

        Jobs paused because the circuit was open are re-queued once the
        breaker is ready for a probe or closes again.
        """
        if event.breaker != self.session_manager.breaker.name:
            return
        recovered = event.kind == BreakerEventKind.READY_FOR_RECOVERY or (
            event.kind == BreakerEventKind.STATE_CHANGE
            and event.new_state == CircuitState.CLOSED
        )
        if not recovered:
            return

        events: List[StatusEvent] = []
        with self._lock:
            for job in self._jobs.values():
                if job.status == JobStatus.PAUSED and job.park_reason == PARK_CIRCUIT_OPEN:
                    events.append(self._requeue(job, f"Circuit breaker {event.breaker} recovering"))
        if not events:
            return

        logger.info(f"Re-queued {len(events)} job(s) paused by circuit breaker {event.breaker}")
        self._publish_soon(events)
        self._ensure_worker()

    # =========================================================================
    # WORKER
    # =========================================================================

    async def _run_worker_loop(self) -> None:
        logger.info("Job worker started")
        while not self._stop_event.is_set():
            with self._lock:
                if not self._queue:
                    break
                job = self._jobs.get(self._queue.popleft())
                if job is None or job.status != JobStatus.PENDING:
                    continue
                run = _ActiveRun(job=job)
                self._active = run
                job.mark_processing()
                event = StatusEvent.from_job(
                    job, EventType.JOB_STARTED,
                    message=f"Processing from batch {job.next_batch_index + 1}/{job.batch_count}",
                )

            log_checkpoint("job_started", {
                "job_id": job.job_id,
                "records": len(job.records),
                "batches": job.batch_count,
                "next_batch_index": job.next_batch_index,
            }, logger)
            try:
                await self._publish(event)
                with log_context(job_id=job.job_id, component="job_manager"):
                    await self._process_job(run)
            except Exception as e:
                logger.error(f"Job {job.job_id[:8]} crashed: {e}", exc_info=True)
                await self._abort_unexpected(run, e)
            finally:
                await self._release(run, "job_finished")
                with self._lock:
                    if self._active is run:
                        self._active = None
        logger.info("Job worker idle")

    async def _process_job(self, run: _ActiveRun) -> None:
        job = run.job
        batches = job.batches()
        total = len(batches)
        with self._lock:
            carried = self._checkpoints.pop(job.job_id, None)
            run.checkpoint = carried

        if not await self._acquire(run, recovering=False, checkpoint=carried):
            return

        index = job.next_batch_index
        while index < total:
            if run.cancel_requested:
                await self._settle(run, JobStatus.CANCELLED, f"Cancelled before batch {index + 1}/{total}")
                return
            if run.emergency_reason:
                await self._settle(
                    run, JobStatus.EMERGENCY_PAUSED,
                    f"Emergency pause before batch {index + 1}/{total}: {run.emergency_reason}",
                    reason=PARK_MEMORY_EXHAUSTION,
                )
                return

            batch = batches[index]
            if carried is not None and carried.batch_index == index:
                checkpoint = carried
            else:
                checkpoint = BatchCheckpoint(index, len(batch))
            carried = None
            run.checkpoint = checkpoint

            attempt = await self._executor.run(
                run.session, batch, job.job_id, checkpoint,
                job.options.batch_timeout_seconds, attempt=1,
            )
            recovered = False
            if not attempt.ok:
                attempt = await self._recover_batch(run, batch, checkpoint, attempt)
                if attempt is None:
                    return
                recovered = True

            await self._merge(run, index, total, attempt, recovered)
            index += 1
            if index < total and self.config.inter_batch_delay_seconds > 0:
                await self._sleep(self.config.inter_batch_delay_seconds)

        await self._settle(run, JobStatus.COMPLETED, f"All {total} batches processed")

    async def _merge(
        self,
        run: _ActiveRun,
        index: int,
        total: int,
        attempt: BatchAttempt,
        recovered: bool,
    ) -> None:
        job = run.job
        with self._lock:
            job.merge_batch(index, attempt.outcomes)
            job.next_batch_index = index + 1
            run.checkpoint = None
            self._counters["batches_processed"] += 1
            event = StatusEvent.from_job(
                job, EventType.BATCH_COMPLETED,
                message=f"Batch {index + 1}/{total} completed",
                event_status=EventStatus.SUCCESS,
                batch=BatchInfo(
                    index=index,
                    total=total,
                    size=len(attempt.outcomes),
                    duration_ms=attempt.duration_ms,
                    recovered=recovered,
                ),
            )
        if run.session is not None:
            self.session_manager.touch(run.session)
        logger.info(
            f"Job {job.job_id[:8]} batch {index + 1}/{total} merged: "
            f"{job.progress.completed} ok, {job.progress.failed} failed "
            f"({job.progress.percentage}%)"
        )
        await self._publish(event)

    async def _recover_batch(
        self,
        run: _ActiveRun,
        batch: List[Any],
        checkpoint: BatchCheckpoint,
        failed: BatchAttempt,
    ) -> Optional[BatchAttempt]:
        """
        Decide what to do with a failed batch attempt.

        Returns the successful retry, or None once the job has been settled.
        """
        job = run.job
        index = checkpoint.batch_index
        total = job.batch_count
        classified = self._classify(
            failed.error,
            ErrorContext("process_batch", job.job_id, index, failed.attempt),
        )
        with self._lock:
            job.record_error(classified.kind, classified.message, classified.recoverable, index)
            event = StatusEvent.from_job(
                job, EventType.BATCH_FAILED,
                message=f"Batch {index + 1}/{total} failed: {classified.message}",
                event_status=EventStatus.FAILURE,
                batch=BatchInfo(index=index, total=total, size=len(batch), duration_ms=failed.duration_ms),
            )
        logger.warning(
            f"Job {job.job_id[:8]} batch {index + 1}/{total} failed "
            f"({classified.kind.value}, recoverable={classified.recoverable}): {classified.message}"
        )
        await self._publish(event)

        if run.emergency_reason:
            self._carry(job, checkpoint)
            await self._settle(
                run, JobStatus.EMERGENCY_PAUSED,
                f"Emergency pause during batch {index + 1}/{total}: {run.emergency_reason}",
                reason=PARK_MEMORY_EXHAUSTION,
            )
            return None
        if run.cancel_requested:
            self._merge_committed(job, checkpoint)
            await self._settle(run, JobStatus.CANCELLED, f"Cancelled after batch {index + 1} failed")
            return None
        if not classified.recoverable or job.options.max_batch_retries < 1:
            self._merge_committed(job, checkpoint)
            await self._settle(
                run, JobStatus.FAILED,
                f"Batch {index + 1}/{total} failed: {classified.message}",
            )
            return None

        # Recovery: fresh session, same batch, one retry
        run.recoveries += 1
        await self._release(run, "crash_recovery")
        delay_ms = retry_delay_ms(classified, run.recoveries, cap_ms=self.config.max_backoff_ms)
        logger.info(
            f"Job {job.job_id[:8]} recovering batch {index + 1}/{total} in {delay_ms}ms "
            f"({classified.retry_strategy.value}), "
            f"{checkpoint.committed_count}/{checkpoint.size} records already committed"
        )
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

        if not await self._acquire(run, recovering=True, checkpoint=checkpoint):
            return None

        retry = await self._executor.run(
            run.session, batch, job.job_id, checkpoint,
            job.options.batch_timeout_seconds, attempt=2,
        )
        if retry.ok:
            with self._lock:
                self._counters["batch_recoveries"] += 1
                event = StatusEvent.from_job(
                    job, EventType.BATCH_RECOVERED,
                    message=f"Batch {index + 1}/{total} recovered on a new session",
                    event_status=EventStatus.SUCCESS,
                    batch=BatchInfo(
                        index=index, total=total, size=len(batch),
                        duration_ms=retry.duration_ms, recovered=True,
                    ),
                )
            log_checkpoint("batch_recovered", {
                "job_id": job.job_id,
                "batch_index": index,
                "crash_recoveries": job.stats.crash_recoveries,
            }, logger)
            await self._publish(event)
            return retry

        retry_error = self._classify(
            retry.error,
            ErrorContext("process_batch", job.job_id, index, retry.attempt),
        )
        with self._lock:
            job.record_error(retry_error.kind, retry_error.message, retry_error.recoverable, index)
        self._merge_committed(job, checkpoint)
        await self._settle(
            run, JobStatus.FAILED,
            f"Batch {index + 1}/{total} failed after recovery: {retry_error.message}",
        )
        return None

    def _carry(self, job: Job, checkpoint: Optional[BatchCheckpoint]) -> None:
        """Keep an interrupted batch's commits for when the parked job resumes."""
        if checkpoint is None:
            return
        with self._lock:
            self._checkpoints[job.job_id] = checkpoint

    def _merge_committed(self, job: Job, checkpoint: BatchCheckpoint) -> None:
        """Keep the outcomes of records an abandoned batch really submitted."""
        committed = checkpoint.committed_outcomes()
        if not committed:
            return
        with self._lock:
            job.merge_batch(checkpoint.batch_index, committed)
        logger.info(
            f"Job {job.job_id[:8]} kept {len(committed)} committed outcome(s) "
            f"from batch {checkpoint.batch_index + 1}"
        )

    async def _acquire(
        self,
        run: _ActiveRun,
        recovering: bool,
        checkpoint: Optional[BatchCheckpoint] = None,
    ) -> bool:
        """
        Acquire a session for the run. Settles the job and returns False
        when no session can be had.
        """
        job = run.job
        result = await self.session_manager.acquire(job.job_id)
        if result.ok:
            run.session = result.handle
            with self._lock:
                job.stats.session_acquisitions += 1
                if recovering:
                    job.stats.crash_recoveries += 1
                    job.stats.batch_retries += 1
            return True

        error = result.error
        batch_index = checkpoint.batch_index if checkpoint is not None else None
        with self._lock:
            job.record_error(error.kind, error.message, error.recoverable, batch_index)

        if error.kind == ErrorKind.CIRCUIT_OPEN:
            self._carry(job, checkpoint)
            if recovering:
                await self._settle(
                    run, JobStatus.RECOVERY_REQUIRED,
                    f"Recovery blocked by open circuit: {error.message}",
                    reason=PARK_RECOVERY_BLOCKED,
                )
            else:
                await self._settle(
                    run, JobStatus.PAUSED,
                    f"Paused, circuit open: {error.message}",
                    reason=PARK_CIRCUIT_OPEN,
                )
        elif error.kind == ErrorKind.RESOURCE_EXHAUSTION:
            self._carry(job, checkpoint)
            await self._settle(
                run, JobStatus.EMERGENCY_PAUSED,
                f"Paused, resources exhausted: {error.message}",
                reason=PARK_MEMORY_EXHAUSTION,
            )
        else:
            if checkpoint is not None:
                self._merge_committed(job, checkpoint)
            await self._settle(
                run, JobStatus.FAILED,
                f"Session acquisition failed: {error.message}",
            )
        return False

    async def _abort_unexpected(self, run: _ActiveRun, error: Exception) -> None:
        """Fail a job whose processing raised out of the worker."""
        if run.job.status != JobStatus.PROCESSING:
            return
        with self._lock:
            run.job.record_error(ErrorKind.GENERIC, f"{type(error).__name__}: {error}", False)
        await self._settle(run, JobStatus.FAILED, f"Job failed unexpectedly: {error}")

    async def _settle(
        self,
        run: _ActiveRun,
        status: JobStatus,
        message: str,
        reason: Optional[str] = None,
    ) -> None:
        """Move the job out of PROCESSING, release its session, emit the final event."""
        job = run.job
        event_type, event_status, counter = _SETTLE_EVENTS[status]
        with self._lock:
            if status == JobStatus.COMPLETED:
                job.mark_completed()
            elif status == JobStatus.FAILED:
                job.mark_failed()
            elif status == JobStatus.CANCELLED:
                job.mark_cancelled()
            else:
                job.mark_parked(status, reason or status.value)
            if status.is_terminal():
                self._checkpoints.pop(job.job_id, None)
            self._counters[counter] += 1
            event = StatusEvent.from_job(
                job, event_type, message, event_status, include_errors=True,
            )

        await self._release(run, status.value)
        log_checkpoint("job_finished", {
            "job_id": job.job_id,
            "status": status.value,
            "completed": job.progress.completed,
            "failed": job.progress.failed,
            "session_acquisitions": job.stats.session_acquisitions,
            "crash_recoveries": job.stats.crash_recoveries,
        }, logger)
        log_fn = logger.info if status == JobStatus.COMPLETED else logger.warning
        log_fn(f"Job {job.job_id[:8]} {status.value}: {message}")
        await self._publish(event)

    async def _release(self, run: _ActiveRun, reason: str) -> None:
        handle, run.session = run.session, None
        if handle is not None:
            await self.session_manager.release(handle, reason)

    # =========================================================================
    # STATUS PUBLICATION
    # =========================================================================

    async def _publish(self, event: StatusEvent) -> None:
        """Best-effort delivery; failures never affect the job."""
        if self.status_sink is None:
            return
        try:
            delivered = await asyncio.wait_for(
                self.status_sink.publish(event),
                timeout=self.config.status_publish_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Status publish timed out for job {event.job_id[:8]} ({event.event_type.value})"
            )
            delivered = False
        except Exception as e:
            logger.warning(f"Status publish failed for job {event.job_id[:8]}: {e}")
            delivered = False
        if not delivered:
            with self._lock:
                self._counters["events_dropped"] += 1

    def _publish_soon(self, events: List[StatusEvent]) -> None:
        """Publish from a synchronous callback without blocking it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            with self._lock:
                self._counters["events_dropped"] += len(events)
            return

        async def _publish_all() -> None:
            for event in events:
                await self._publish(event)

        task = loop.create_task(_publish_all())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # GARBAGE COLLECTION
    # =========================================================================

    async def _gc_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.config.cleanup_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                self.cleanup_old_jobs()
            except Exception as e:
                logger.error(f"Job cleanup failed: {e}", exc_info=True)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobManager",
    "JobView",
    "JobSummary",
    "JobListView",
    "JobActionResult",
    "format_duration",
    "PARK_CIRCUIT_OPEN",
    "PARK_MEMORY_EXHAUSTION",
    "PARK_RECOVERY_BLOCKED",
]
