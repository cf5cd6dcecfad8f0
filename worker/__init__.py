# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Batch execution components
# PURPOSE: Collaborator contracts, per-record checkpoint, batch executor
# CREATED: 18 OCT 2026
# ============================================================================
"""
Worker Module

Components that run batches against a live session:
- contracts: SessionProvider / RecordProcessor collaborator interfaces
- checkpoint: Per-record commits so a retry never resubmits a record
- executor: One batch attempt under a timeout
- echo: In-process demo collaborators
"""

from worker.checkpoint import BatchCheckpoint
from worker.contracts import (
    RecordOutcome,
    SessionHandle,
    SessionProvider,
    RecordProcessor,
    SessionTerminatedError,
    ResourceExhaustedError,
)
from worker.executor import (
    BatchExecutor,
    BatchAttempt,
    BatchTimeoutError,
)
from worker.echo import EchoSessionProvider, EchoRecordProcessor

__all__ = [
    # Checkpoint
    "BatchCheckpoint",
    # Contracts
    "RecordOutcome",
    "SessionHandle",
    "SessionProvider",
    "RecordProcessor",
    "SessionTerminatedError",
    "ResourceExhaustedError",
    # Executor
    "BatchExecutor",
    "BatchAttempt",
    "BatchTimeoutError",
    # Demo collaborators
    "EchoSessionProvider",
    "EchoRecordProcessor",
]
