# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# LAST_REVIEWED: 18 OCT 2026
# ============================================================================

from core.contracts import (
    JobStatus,
    RecordStatus,
    CircuitState,
    ErrorKind,
    RetryStrategy,
    ThresholdKind,
    BreakerEventKind,
)
from core.errors import (
    EngineError,
    JobValidationError,
    InvalidTransitionError,
    ConfigurationError,
)
from core.models import (
    Job,
    JobOptions,
    JobProgress,
    JobStats,
    JobErrorEntry,
    RecordOutcome,
    StatusEvent,
    EventType,
    EventStatus,
    BatchInfo,
)

__all__ = [
    # Enums
    "JobStatus",
    "RecordStatus",
    "CircuitState",
    "ErrorKind",
    "RetryStrategy",
    "ThresholdKind",
    "BreakerEventKind",
    "EventType",
    "EventStatus",
    # Errors
    "EngineError",
    "JobValidationError",
    "InvalidTransitionError",
    "ConfigurationError",
    # Models
    "Job",
    "JobOptions",
    "JobProgress",
    "JobStats",
    "JobErrorEntry",
    "RecordOutcome",
    "StatusEvent",
    "BatchInfo",
]
