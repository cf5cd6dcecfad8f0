# ============================================================================
# BATCH CHECKPOINT
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Per-record commit tracking inside a batch
# PURPOSE: Keep a recovery retry from resubmitting records already submitted
# CREATED: 18 OCT 2026
# ============================================================================
"""
Batch Checkpoint

A batch that dies mid-way may already have submitted some of its records.
The record processor commits each record's outcome as soon as it is
durable; when the batch is retried on a fresh session only the records
without a committed outcome are replayed, and the final batch result is
reassembled in record order.

Design:
- Positions are indexes into the batch (0..size-1)
- The processor sees local indexes into the records it was given;
  the checkpoint maps them back to batch positions
- First commit for a position wins
- Processors that never commit get the plain "replay the whole batch"
  behaviour

Usage:
    checkpoint = BatchCheckpoint(batch_index=2, size=len(batch))
    try:
        outcomes = await processor.process_batch(session, batch, job_id, checkpoint, 300)
    except Exception:
        positions = checkpoint.narrow()          # uncommitted positions only
        retry_records = [batch[p] for p in positions]
        outcomes = await processor.process_batch(new_session, retry_records, job_id, checkpoint, 300)
    merged = checkpoint.merge(outcomes)
"""

import logging
import threading
from typing import Dict, List

from core.models.record import RecordOutcome

logger = logging.getLogger(__name__)


class BatchCheckpoint:
    """Per-record commit tracking for one batch."""

    def __init__(self, batch_index: int, size: int):
        if size < 0:
            raise ValueError("Batch size cannot be negative")
        self.batch_index = batch_index
        self.size = size
        self._positions: List[int] = list(range(size))
        self._committed: Dict[int, RecordOutcome] = {}
        self._lock = threading.Lock()

    @property
    def positions(self) -> List[int]:
        """Batch positions of the records handed to the current attempt."""
        with self._lock:
            return list(self._positions)

    @property
    def committed_count(self) -> int:
        with self._lock:
            return len(self._committed)

    def commit(self, index: int, outcome: RecordOutcome) -> None:
        """
        Record a durable outcome for the record at local ``index``.

        ``index`` refers to the records list of the current attempt.
        """
        with self._lock:
            if not 0 <= index < len(self._positions):
                raise IndexError(
                    f"Checkpoint index {index} out of range for {len(self._positions)} records"
                )
            position = self._positions[index]
            if position in self._committed:
                logger.debug(
                    f"Batch {self.batch_index}: position {position} already committed"
                )
                return
            self._committed[position] = outcome

    def is_committed(self, index: int) -> bool:
        with self._lock:
            return self._positions[index] in self._committed

    def pending_positions(self) -> List[int]:
        with self._lock:
            return [p for p in range(self.size) if p not in self._committed]

    def narrow(self) -> List[int]:
        """Restrict the next attempt to uncommitted positions and return them."""
        with self._lock:
            self._positions = [p for p in range(self.size) if p not in self._committed]
            return list(self._positions)

    def committed_outcomes(self) -> List[RecordOutcome]:
        """Committed outcomes in record order (used when a batch is abandoned)."""
        with self._lock:
            return [self._committed[p] for p in sorted(self._committed)]

    def merge(self, outcomes: List[RecordOutcome]) -> List[RecordOutcome]:
        """
        Combine the current attempt's outcomes with earlier commits.

        Outcomes returned by the current attempt win for its own positions;
        positions committed by an earlier attempt keep their commit.
        """
        with self._lock:
            if len(outcomes) != len(self._positions):
                raise ValueError(
                    f"Record processor returned {len(outcomes)} outcomes "
                    f"for {len(self._positions)} records"
                )
            merged: Dict[int, RecordOutcome] = dict(self._committed)
            for outcome, position in zip(outcomes, self._positions):
                merged[position] = outcome
            missing = [p for p in range(self.size) if p not in merged]
            if missing:
                raise ValueError(f"Batch {self.batch_index} missing outcomes for {missing}")
            return [merged[p] for p in range(self.size)]


__all__ = ["BatchCheckpoint"]
