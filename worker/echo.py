# ============================================================================
# ECHO COLLABORATORS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Worker - Demo session provider and record processor
# PURPOSE: Run the engine end to end without a real remote resource
# CREATED: 18 OCT 2026
# ============================================================================
"""
Echo Collaborators

In-process stand-ins for a real session provider and record processor.
The service uses them when no other collaborators are configured, so the
API, health checks and status events can be exercised locally.

Records:
    Any JSON value. A dict with {"fail": true} produces an ERROR outcome;
    {"skip": true} produces NOT_SUBMITTED; everything else is SUBMITTED.
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, List

from core.models.record import RecordOutcome
from worker.checkpoint import BatchCheckpoint
from worker.contracts import RecordProcessor, SessionHandle, SessionProvider

logger = logging.getLogger(__name__)


class EchoSessionProvider(SessionProvider):
    """Hands out numbered in-memory sessions."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.open_sessions: Dict[int, Dict[str, Any]] = {}

    async def create_session(self) -> Dict[str, Any]:
        session_id = next(self._ids)
        resource = {"session": session_id, "open": True}
        self.open_sessions[session_id] = resource
        logger.debug(f"Echo session {session_id} opened")
        return resource

    async def close_session(self, resource: Dict[str, Any]) -> None:
        resource["open"] = False
        self.open_sessions.pop(resource["session"], None)
        logger.debug(f"Echo session {resource['session']} closed")

    async def check_session(self, resource: Dict[str, Any]) -> bool:
        return bool(resource.get("open"))


class EchoRecordProcessor(RecordProcessor):
    """Echoes each record back as its outcome detail."""

    def __init__(self, delay_per_record_seconds: float = 0.0):
        self.delay_per_record_seconds = delay_per_record_seconds

    async def process_batch(
        self,
        session: SessionHandle,
        records: List[Any],
        job_id: str,
        checkpoint: BatchCheckpoint,
        timeout_seconds: float,
    ) -> List[RecordOutcome]:
        outcomes = []
        for index, record in enumerate(records):
            if self.delay_per_record_seconds:
                await asyncio.sleep(self.delay_per_record_seconds)
            if isinstance(record, dict) and record.get("fail"):
                outcome = RecordOutcome.error(record, detail="Record rejected")
            elif isinstance(record, dict) and record.get("skip"):
                outcome = RecordOutcome.not_submitted(record, detail="Record skipped")
            else:
                outcome = RecordOutcome.submitted(record, detail={"echo": record})
            checkpoint.commit(index, outcome)
            outcomes.append(outcome)
        return outcomes


__all__ = ["EchoSessionProvider", "EchoRecordProcessor"]
