# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 18 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the batch engine. Everything lives in process
memory; there is no persistence layer.
"""

from core.models.record import RecordOutcome
from core.models.job import Job, JobOptions, JobProgress, JobStats, JobErrorEntry
from core.models.events import StatusEvent, EventType, EventStatus, BatchInfo

__all__ = [
    # Records
    "RecordOutcome",
    # Job
    "Job",
    "JobOptions",
    "JobProgress",
    "JobStats",
    "JobErrorEntry",
    # Events
    "StatusEvent",
    "EventType",
    "EventStatus",
    "BatchInfo",
]
