# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Job scheduling and engine wiring
# PURPOSE: Run jobs batch by batch with crash recovery
# CREATED: 18 OCT 2026
# ============================================================================
"""
Orchestrator Module

The job manager that drives batch execution, and the Engine bundle that
wires it to sessions, the circuit breaker and the resource monitor.

Usage:
    from orchestrator import Engine

    engine = Engine(provider, processor)
    await engine.start()
    job_id = await engine.jobs.submit(records)
"""

from .job_manager import (
    JobManager,
    JobView,
    JobSummary,
    JobListView,
    JobActionResult,
    format_duration,
)
from .runtime import Engine

__all__ = [
    "JobManager",
    "JobView",
    "JobSummary",
    "JobListView",
    "JobActionResult",
    "format_duration",
    "Engine",
]
