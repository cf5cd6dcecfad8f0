# ============================================================================
# ENGINE EXCEPTIONS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Foundation - Caller-error exceptions
# PURPOSE: Exceptions for invalid input, illegal transitions and bad config
# CREATED: 18 OCT 2026
# ============================================================================
"""
Engine Exceptions

Only caller mistakes are raised. Expected outcomes such as "job not
found" or "job already finished" are returned as result objects
(see orchestrator.job_manager.JobActionResult).
"""

from typing import List, Optional


class EngineError(Exception):
    """Base class for engine errors."""
    pass


class JobValidationError(EngineError, ValueError):
    """Raised when a job submission is invalid (empty records, bad options)."""
    pass


class InvalidTransitionError(EngineError, ValueError):
    """Raised when a job status transition is not allowed."""

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: cannot transition from {current} to {target}")


class ConfigurationError(EngineError, ValueError):
    """Raised when configuration validation fails."""

    def __init__(self, problems: List[str], message: Optional[str] = None):
        self.problems = list(problems)
        super().__init__(message or "Invalid configuration: " + "; ".join(self.problems))


__all__ = [
    "EngineError",
    "JobValidationError",
    "InvalidTransitionError",
    "ConfigurationError",
]
