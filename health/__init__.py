# ============================================================================
# HEALTH CHECK MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Health check plugin system
# PURPOSE: Kubernetes probes and comprehensive health monitoring
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Module

Plugin-based health check system for the batch engine:
- /livez: Process alive (instant, for Kubernetes liveness probe)
- /readyz: Ready to accept jobs (required checks pass)
- /health: Comprehensive status (all plugins)

Architecture:
- HealthCheckPlugin: Base class for health checks
- HealthCheckRegistry: Plugin discovery and registration
- HealthCheckExecutor: Parallel execution with timeouts
- Three endpoint tiers: livez (instant), readyz (fast), health (thorough)

Usage:
    from health import health_router, register_check

    # Register custom check
    @register_check(category="resources")
    class MyCheck(HealthCheckPlugin):
        name = "my_check"

        async def check(self) -> HealthCheckResult:
            return HealthCheckResult.healthy()

    # Mount router
    app.include_router(health_router)
"""

from health.core import (
    HealthStatus,
    HealthCheckResult,
    HealthCheckPlugin,
    HealthCheckCategory,
)
from health.registry import (
    HealthCheckRegistry,
    register_check,
    get_registry,
)
from health.executor import HealthCheckExecutor
from health.router import health_router

__all__ = [
    # Core types
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "HealthCheckCategory",
    # Registry
    "HealthCheckRegistry",
    "register_check",
    "get_registry",
    # Executor
    "HealthCheckExecutor",
    # Router
    "health_router",
]
