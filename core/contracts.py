# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Foundation - Core enums shared by every component
# PURPOSE: Status, circuit, error and outcome vocabularies
# LAST_REVIEWED: 18 OCT 2026
# EXPORTS: JobStatus, CircuitState, ErrorKind, RetryStrategy, RecordStatus,
#          ThresholdKind, BreakerEventKind
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the batch session engine.

These enums cross every boundary:
- Job table (orchestrator)
- Session acquisition (infrastructure)
- Record processor outcomes (worker)
- HTTP API responses (api)
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class JobStatus(str, Enum):
    """
    Job lifecycle states.

    State transitions:
        PENDING -> PROCESSING -> COMPLETED
                              -> FAILED
                              -> CANCELLED
                              -> PAUSED | RECOVERY_REQUIRED | EMERGENCY_PAUSED
        PENDING -> CANCELLED
        PAUSED | RECOVERY_REQUIRED | EMERGENCY_PAUSED -> PENDING (resume)
                                                      -> CANCELLED
    """
    PENDING = "pending"                      # Queued, waiting for the worker
    PROCESSING = "processing"                # Worker is running batches
    PAUSED = "paused"                        # Parked: circuit breaker open
    RECOVERY_REQUIRED = "recovery_required"  # Parked mid-job: recovery blocked
    COMPLETED = "completed"                  # Every batch merged
    FAILED = "failed"                        # Aborted (non-recoverable or retry failed)
    CANCELLED = "cancelled"                  # Cancelled by a client
    EMERGENCY_PAUSED = "emergency_paused"    # Parked: memory exhaustion

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    def is_parked(self) -> bool:
        """Check if the job is parked and can be resumed."""
        return self in (
            JobStatus.PAUSED,
            JobStatus.RECOVERY_REQUIRED,
            JobStatus.EMERGENCY_PAUSED,
        )


class RecordStatus(str, Enum):
    """
    Per-record outcome reported by the record processor.

    Record-level business failures are data, never exceptions.
    """
    SUBMITTED = "submitted"
    ERROR = "error"
    NOT_SUBMITTED = "not_submitted"

    def is_success(self) -> bool:
        return self == RecordStatus.SUBMITTED


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Blocking acquisition attempts
    HALF_OPEN = "half_open"  # Letting a single probe through


# ============================================================================
# ERROR TAXONOMY
# ============================================================================

class ErrorKind(str, Enum):
    """
    Classified failure kinds.

    RECORD_FAILURE is only used for record-level entries in a job's error
    log; the classifier never produces it.
    """
    RESOURCE_LAUNCH_FAILURE = "resource_launch_failure"
    RESOURCE_TIMEOUT = "resource_timeout"
    RESOURCE_SESSION_TERMINATED = "resource_session_terminated"
    DOWNSTREAM_FAILURE = "downstream_failure"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    CIRCUIT_OPEN = "circuit_open"
    GENERIC = "generic"
    RECORD_FAILURE = "record_failure"


class RetryStrategy(str, Enum):
    """Recovery policy applied after a recoverable failure."""
    IMMEDIATE = "immediate"
    PROGRESSIVE_BACKOFF = "progressive_backoff"
    SESSION_RECREATION = "session_recreation"
    NO_RETRY = "no_retry"


# ============================================================================
# OBSERVER EVENT KINDS
# ============================================================================

class ThresholdKind(str, Enum):
    """Resource monitor notifications."""
    WARNING = "warning"            # Soft memory threshold crossed
    EXHAUSTION = "exhaustion"      # Hard memory threshold crossed
    STALE_HANDLE = "stale_handle"  # Handle exceeded age/idle ceiling
    RECLAIMED = "reclaimed"        # Forced reclamation finished


class BreakerEventKind(str, Enum):
    """Circuit breaker notifications."""
    STATE_CHANGE = "state_change"
    READY_FOR_RECOVERY = "ready_for_recovery"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobStatus",
    "RecordStatus",
    "CircuitState",
    "ErrorKind",
    "RetryStrategy",
    "ThresholdKind",
    "BreakerEventKind",
]
