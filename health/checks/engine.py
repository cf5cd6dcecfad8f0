# ============================================================================
# ENGINE HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Engine component checks
# PURPOSE: Breaker, memory, session and job manager state
# CREATED: 18 OCT 2026
# ============================================================================
"""
Engine Health Checks

Resource checks (priority 20):
- CircuitBreakersCheck: unhealthy when any breaker is OPEN, degraded when HALF_OPEN
- ResourceMonitorCheck: degraded over the warning threshold, unhealthy over max
- SessionsCheck: issues reported by SessionManager.health_report()

Engine checks (priority 30):
- EngineCheck: engine started, queue depth, active job
"""

import logging

from core.contracts import CircuitState
from health.core import HealthCheckPlugin, HealthCheckResult
from health.registry import register_check

logger = logging.getLogger(__name__)


# Global reference to the engine (set by main app)
_engine = None


def set_engine(engine) -> None:
    """Set engine reference for health checks."""
    global _engine
    _engine = engine


def _not_initialized() -> HealthCheckResult:
    return HealthCheckResult.unhealthy(
        message="Engine not initialized",
        hint="Engine reference not set",
    )


@register_check(category="resources")
class CircuitBreakersCheck(HealthCheckPlugin):
    """Circuit breaker states."""

    name = "circuit_breakers"
    timeout_seconds = 1.0
    # An open breaker pauses jobs; the service can still accept them
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        if _engine is None:
            return _not_initialized()

        metrics = _engine.breakers.metrics()
        states = {name: m["state"] for name, m in metrics.items()}
        open_breakers = [n for n, s in states.items() if s == CircuitState.OPEN.value]
        half_open = [n for n, s in states.items() if s == CircuitState.HALF_OPEN.value]

        if open_breakers:
            return HealthCheckResult.unhealthy(
                message=f"Circuit open: {', '.join(open_breakers)}",
                breakers=metrics,
            )
        if half_open:
            return HealthCheckResult.degraded(
                message=f"Circuit half-open: {', '.join(half_open)}",
                breakers=metrics,
            )
        return HealthCheckResult.healthy(
            message=f"{len(states)} circuit breaker(s) closed",
            states=states,
        )


@register_check(category="resources")
class ResourceMonitorCheck(HealthCheckPlugin):
    """Memory against the monitor's thresholds."""

    name = "resource_monitor"
    timeout_seconds = 1.0

    async def check(self) -> HealthCheckResult:
        if _engine is None:
            return _not_initialized()

        monitor = _engine.monitor
        metrics = monitor.metrics()
        details = {
            "running": monitor.is_running,
            "memory": metrics["memory"],
            "tracked_sessions": metrics["tracked_sessions"],
            "thresholds": metrics["thresholds"],
        }

        if monitor.is_exhausted:
            return HealthCheckResult.unhealthy(message="Memory exhausted", **details)
        if monitor.is_warning:
            return HealthCheckResult.degraded(message="Memory above warning threshold", **details)
        if not monitor.is_running:
            return HealthCheckResult.degraded(message="Resource monitor not running", **details)
        return HealthCheckResult.healthy(message="Memory within limits", **details)


@register_check(category="resources")
class SessionsCheck(HealthCheckPlugin):
    """Session acquisition health."""

    name = "sessions"
    timeout_seconds = 1.0
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        if _engine is None:
            return _not_initialized()

        report = _engine.sessions.health_report()
        if report["healthy"]:
            return HealthCheckResult.healthy(
                message=f"{report['stats']['active']} active session(s)",
                stats=report["stats"],
            )
        return HealthCheckResult.degraded(
            message="; ".join(report["issues"]),
            issues=report["issues"],
            stats=report["stats"],
        )


@register_check(category="engine")
class EngineCheck(HealthCheckPlugin):
    """Engine started and job manager state."""

    name = "engine"
    timeout_seconds = 1.0

    async def check(self) -> HealthCheckResult:
        if _engine is None:
            return _not_initialized()
        if not _engine.is_running:
            return HealthCheckResult.unhealthy(message="Engine not running")

        stats = _engine.jobs.stats
        listing = _engine.jobs.list_jobs()
        return HealthCheckResult.healthy(
            message=(
                f"Engine running ({stats['queue_depth']} queued, "
                f"{'processing' if listing.is_processing else 'idle'})"
            ),
            uptime_seconds=_engine.uptime_seconds,
            active_job_id=listing.active_job_id,
            **stats,
        )


__all__ = [
    "CircuitBreakersCheck",
    "ResourceMonitorCheck",
    "SessionsCheck",
    "EngineCheck",
    "set_engine",
]
