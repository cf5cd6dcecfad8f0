# ============================================================================
# HEALTH CHECK PLUGINS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Health check implementations
# PURPOSE: Specific health checks for the batch engine components
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Plugins

Startup Checks (priority 10):
- process_memory: Process RSS via psutil
- config: Environment configuration valid

Resource Checks (priority 20):
- circuit_breakers: Breaker states
- resource_monitor: Memory against monitor thresholds
- sessions: Session acquisition health

Engine Checks (priority 30):
- engine: Engine running, queue depth, active job

Import this module to register all checks:
    import health.checks
"""

from health.checks.startup import ProcessMemoryCheck, ConfigCheck
from health.checks.engine import (
    CircuitBreakersCheck,
    ResourceMonitorCheck,
    SessionsCheck,
    EngineCheck,
    set_engine,
)

__all__ = [
    # Startup
    "ProcessMemoryCheck",
    "ConfigCheck",
    # Resources
    "CircuitBreakersCheck",
    "ResourceMonitorCheck",
    "SessionsCheck",
    # Engine
    "EngineCheck",
    "set_engine",
]
