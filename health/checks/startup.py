# ============================================================================
# STARTUP HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Startup health checks
# PURPOSE: Process memory and configuration checks
# CREATED: 18 OCT 2026
# ============================================================================
"""
Startup Health Checks

Basic checks that run first (priority 10):
- ProcessMemoryCheck: Process RSS and system memory via psutil
- ConfigCheck: Environment configuration passes validation
"""

import logging
import os

import psutil

from core.config import EngineConfig, MonitorDefaults
from core.errors import ConfigurationError
from health.core import HealthCheckPlugin, HealthCheckResult
from health.registry import register_check

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


@register_check(category="startup")
class ProcessMemoryCheck(HealthCheckPlugin):
    """
    Process memory check.

    Compares this process's RSS with the configured memory thresholds.
    Not required for readiness; the resource monitor check covers the
    thresholds the engine actually acts on.
    """

    name = "process_memory"
    timeout_seconds = 2.0
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        thresholds = MonitorDefaults.from_env()
        process = psutil.Process(os.getpid())
        rss_mb = process.memory_info().rss / BYTES_PER_MB
        system = psutil.virtual_memory()

        details = {
            "pid": process.pid,
            "rss_mb": round(rss_mb, 1),
            "system_memory_percent": system.percent,
            "system_available_mb": round(system.available / BYTES_PER_MB, 1),
            "warning_threshold_mb": thresholds.warning_threshold_mb,
            "max_threshold_mb": thresholds.max_threshold_mb,
        }

        if rss_mb > thresholds.max_threshold_mb:
            return HealthCheckResult.unhealthy(
                message=f"Process memory {rss_mb:.0f}MB over maximum",
                **details,
            )
        if rss_mb > thresholds.warning_threshold_mb:
            return HealthCheckResult.degraded(
                message=f"Process memory {rss_mb:.0f}MB over warning threshold",
                **details,
            )
        return HealthCheckResult.healthy(message=f"Process memory {rss_mb:.0f}MB", **details)


@register_check(category="startup")
class ConfigCheck(HealthCheckPlugin):
    """
    Configuration health check.

    Re-reads the environment and reports every validation problem.
    """

    name = "config"
    timeout_seconds = 1.0

    async def check(self) -> HealthCheckResult:
        try:
            config = EngineConfig.from_env()
        except ConfigurationError as e:
            return HealthCheckResult.unhealthy(
                message=f"Invalid configuration: {len(e.problems)} problem(s)",
                problems=e.problems,
            )
        except ValueError as e:
            return HealthCheckResult.unhealthy(message=f"Unparseable configuration: {e}")

        return HealthCheckResult.healthy(message="Configuration valid", **config.summary())


__all__ = [
    "ProcessMemoryCheck",
    "ConfigCheck",
]
