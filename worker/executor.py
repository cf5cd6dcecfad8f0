# ============================================================================
# BATCH EXECUTOR
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Record processor invocation with timeout
# PURPOSE: Run one batch attempt and capture its outcomes or failure
# CREATED: 18 OCT 2026
# ============================================================================
"""
Batch Executor

Runs one attempt of one batch through the RecordProcessor with:
- Timeout enforcement (asyncio.wait_for)
- Per-record checkpoint (only uncommitted records are replayed)
- Outcome count validation
- Error capture

The executor never classifies or retries; it hands a BatchAttempt back to
the JobManager, which owns recovery policy.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

from core.models.record import RecordOutcome
from worker.checkpoint import BatchCheckpoint
from worker.contracts import RecordProcessor, SessionHandle

logger = logging.getLogger(__name__)


class BatchTimeoutError(asyncio.TimeoutError):
    """Raised when a batch exceeds its timeout."""

    def __init__(self, batch_index: int, timeout_seconds: float):
        self.batch_index = batch_index
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Batch {batch_index} timeout exceeded after {timeout_seconds:g}s"
        )


# ============================================================================
# ATTEMPT RESULT
# ============================================================================

@dataclass
class BatchAttempt:
    """Outcome of a single batch attempt."""
    batch_index: int
    attempt: int
    duration_ms: int
    outcomes: List[RecordOutcome] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls,
        batch_index: int,
        attempt: int,
        duration_ms: int,
        outcomes: List[RecordOutcome],
    ) -> "BatchAttempt":
        return cls(batch_index, attempt, duration_ms, outcomes=outcomes)

    @classmethod
    def failure(
        cls,
        batch_index: int,
        attempt: int,
        duration_ms: int,
        error: BaseException,
    ) -> "BatchAttempt":
        return cls(batch_index, attempt, duration_ms, error=error)


# ============================================================================
# EXECUTOR
# ============================================================================

class BatchExecutor:
    """
    Executes batch attempts.

    Takes a session, the full batch and its checkpoint; returns a
    BatchAttempt whose outcomes are already merged with earlier commits
    and in record order.
    """

    def __init__(self, processor: RecordProcessor):
        self.processor = processor
        self._attempts = 0
        self._timeouts = 0
        self._failures = 0

    async def run(
        self,
        session: SessionHandle,
        batch: List[Any],
        job_id: str,
        checkpoint: BatchCheckpoint,
        timeout_seconds: float,
        attempt: int = 1,
    ) -> BatchAttempt:
        """
        Run one attempt of a batch.

        Args:
            session: Live session owned by the job
            batch: Full batch of records
            job_id: Owning job
            checkpoint: Per-record commits for this batch
            timeout_seconds: Hard bound on the attempt
            attempt: 1 for the first attempt, 2 for the recovery retry

        Returns:
            BatchAttempt with merged outcomes or the raised error
        """
        batch_index = checkpoint.batch_index
        positions = checkpoint.narrow()
        records = [batch[p] for p in positions]
        start_time = time.time()
        self._attempts += 1

        logger.info(
            f"Executing batch {batch_index} attempt {attempt}: "
            f"{len(records)}/{len(batch)} records, session={session.id[:8]}"
        )

        try:
            if records:
                outcomes = await self._execute_with_timeout(
                    session, records, job_id, checkpoint, timeout_seconds
                )
            else:
                outcomes = []
            merged = checkpoint.merge(outcomes)

        except asyncio.TimeoutError as e:
            self._timeouts += 1
            duration_ms = int((time.time() - start_time) * 1000)
            error = e if isinstance(e, BatchTimeoutError) else BatchTimeoutError(
                batch_index, timeout_seconds
            )
            logger.error(f"Batch {batch_index} attempt {attempt} timed out after {timeout_seconds:g}s")
            return BatchAttempt.failure(batch_index, attempt, duration_ms, error)

        except Exception as e:
            self._failures += 1
            duration_ms = int((time.time() - start_time) * 1000)
            logger.warning(
                f"Batch {batch_index} attempt {attempt} failed: {type(e).__name__}: {e}"
            )
            return BatchAttempt.failure(batch_index, attempt, duration_ms, e)

        duration_ms = int((time.time() - start_time) * 1000)
        return BatchAttempt.success(batch_index, attempt, duration_ms, merged)

    async def _execute_with_timeout(
        self,
        session: SessionHandle,
        records: List[Any],
        job_id: str,
        checkpoint: BatchCheckpoint,
        timeout_seconds: float,
    ) -> List[RecordOutcome]:
        try:
            return await asyncio.wait_for(
                self.processor.process_batch(
                    session, records, job_id, checkpoint, timeout_seconds
                ),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise BatchTimeoutError(checkpoint.batch_index, timeout_seconds)

    @property
    def stats(self) -> dict:
        return {
            "attempts": self._attempts,
            "timeouts": self._timeouts,
            "failures": self._failures,
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BatchTimeoutError",
    "BatchAttempt",
    "BatchExecutor",
]
