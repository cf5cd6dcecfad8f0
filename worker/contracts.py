# ============================================================================
# WORKER CONTRACTS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Collaborator contracts for sessions and record processing
# PURPOSE: Define what the engine needs from session providers and processors
# CREATED: 18 OCT 2026
# ============================================================================
"""
Worker Contracts

The engine never touches the remote resource itself. It depends on two
collaborators:

SessionProvider
    create_session() -> opaque resource
    close_session(resource)
    check_session(resource) -> bool   (optional, defaults to True)

RecordProcessor
    process_batch(session, records, job_id, checkpoint, timeout_seconds)
        -> List[RecordOutcome]    (one per record, in record order)

Error contract:
- Record-level business failures are RecordOutcome(status=ERROR/NOT_SUBMITTED)
- Session-fatal conditions (crash, disconnect, navigation collapse,
  timeout) are raised and classified by services.error_classifier
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from core.models.record import RecordOutcome
from worker.checkpoint import BatchCheckpoint

logger = logging.getLogger(__name__)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class SessionTerminatedError(Exception):
    """Raised by processors when the remote session died mid-batch."""
    pass


class ResourceExhaustedError(Exception):
    """Raised when the process or resource ran out of memory/capacity."""

    def __init__(self, message: str, resource: str = "memory", usage_mb: Optional[float] = None):
        self.resource = resource
        self.usage_mb = usage_mb
        super().__init__(message)


# ============================================================================
# SESSION HANDLE
# ============================================================================

@dataclass
class SessionHandle:
    """
    Engine-side wrapper around an opaque session resource.

    Owned by the SessionManager for the duration of one job; released
    exactly once. The engine never inspects ``resource``.
    """
    resource: Any
    job_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: datetime = field(default_factory=datetime.utcnow)
    last_activity_at: datetime = field(default_factory=datetime.utcnow)

    def touch(self) -> None:
        self.last_activity_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "acquired_at": self.acquired_at.isoformat() + "Z",
            "last_activity_at": self.last_activity_at.isoformat() + "Z",
        }


# ============================================================================
# COLLABORATORS
# ============================================================================

class SessionProvider(ABC):
    """Creates and destroys the expensive external session."""

    @abstractmethod
    async def create_session(self) -> Any:
        """Launch a new session. May raise; failures are classified."""
        pass

    @abstractmethod
    async def close_session(self, resource: Any) -> None:
        """Tear down a session. Called at most once per session."""
        pass

    async def check_session(self, resource: Any) -> bool:
        """Return False when the session is known to be unusable."""
        return True


class RecordProcessor(ABC):
    """
    Runs one batch of records against a live session.

    Implementations should call ``checkpoint.commit(index, outcome)`` as
    soon as a record is durably submitted, so a recovery retry does not
    submit it a second time.
    """

    @abstractmethod
    async def process_batch(
        self,
        session: SessionHandle,
        records: List[Any],
        job_id: str,
        checkpoint: BatchCheckpoint,
        timeout_seconds: float,
    ) -> List[RecordOutcome]:
        """Return one outcome per record, in record order."""
        pass


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "RecordOutcome",
    "SessionHandle",
    "SessionProvider",
    "RecordProcessor",
    "SessionTerminatedError",
    "ResourceExhaustedError",
    "BatchCheckpoint",
]
