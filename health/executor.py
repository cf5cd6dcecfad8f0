# ============================================================================
# HEALTH CHECK EXECUTOR
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Parallel health check execution
# PURPOSE: Execute health checks with timeouts and aggregation
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Executor

Executes health checks with:
- Priority tiers run in order, checks inside a tier run in parallel
- Per-check timeouts
- Overall execution timeout
- Result aggregation with 'worst wins' semantics

Checks are in-process reads of engine state, so the timeouts are short.
"""

import asyncio
import logging
import time
from itertools import groupby
from typing import Dict, List, Optional

from health.core import (
    AggregatedHealthResult,
    HealthCheckPlugin,
    HealthCheckResult,
    HealthStatus,
)
from health.registry import HealthCheckRegistry, get_registry

logger = logging.getLogger(__name__)


class HealthCheckExecutor:
    """Runs registered checks tier by tier."""

    def __init__(
        self,
        registry: Optional[HealthCheckRegistry] = None,
        overall_timeout: float = 30.0,
    ):
        self.registry = registry or get_registry()
        self.overall_timeout = overall_timeout

    async def execute_all(self) -> AggregatedHealthResult:
        """Execute every registered check."""
        return await self._execute(self.registry.get_checks_by_priority())

    async def execute_required(self) -> AggregatedHealthResult:
        """Execute only checks required for /readyz."""
        checks = sorted(self.registry.get_required_checks(), key=lambda c: c.priority)
        return await self._execute(checks)

    async def execute_single(self, name: str) -> Optional[HealthCheckResult]:
        check = self.registry.get(name)
        if check is None:
            return None
        return await self._execute_check(check)

    async def _execute(self, checks: List[HealthCheckPlugin]) -> AggregatedHealthResult:
        start_time = time.monotonic()
        results: Dict[str, HealthCheckResult] = {}

        for priority, tier in groupby(checks, key=lambda c: c.priority):
            tier_checks = list(tier)
            elapsed = time.monotonic() - start_time
            if elapsed >= self.overall_timeout:
                logger.warning(
                    f"Health check overall timeout ({self.overall_timeout}s) exceeded"
                )
                for check in tier_checks:
                    results[check.name] = HealthCheckResult.unhealthy(
                        "Skipped: overall timeout exceeded"
                    )
                continue

            tier_results = await asyncio.gather(
                *(self._execute_check(check) for check in tier_checks)
            )
            for check, result in zip(tier_checks, tier_results):
                results[check.name] = result

        return AggregatedHealthResult(
            status=HealthStatus.aggregate([r.status for r in results.values()]),
            checks=results,
            total_duration_ms=(time.monotonic() - start_time) * 1000,
        )

    async def _execute_check(self, check: HealthCheckPlugin) -> HealthCheckResult:
        """Execute a single check with timeout."""
        start_time = time.monotonic()
        try:
            result = await asyncio.wait_for(check.check(), timeout=check.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Health check {check.name} timed out after {check.timeout_seconds}s")
            result = HealthCheckResult.unhealthy(f"Timeout after {check.timeout_seconds}s")
        except Exception as e:
            logger.error(f"Health check {check.name} failed: {e}")
            result = HealthCheckResult.from_exception(e)

        result.duration_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            f"Health check {check.name}: {result.status.value} ({result.duration_ms:.1f}ms)"
        )
        return result


__all__ = [
    "HealthCheckExecutor",
]
