# ============================================================================
# HEALTH CHECK TESTS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Tests - Health plugins, executor and probes
# PURPOSE: Verify check aggregation, HTTP status mapping and engine checks
# CREATED: 18 OCT 2026
# ============================================================================
"""
Health Check Tests

Covers:
1. Status aggregation (worst wins) and registry bookkeeping
2. Executor: priority tiers, per-check timeout, exception capture
3. /livez, /readyz, /health, /health/{name} status codes
4. Engine checks: breakers, resource monitor, sessions, engine state

Run with:
    pytest tests/test_health.py -v
"""

import asyncio
import pytest
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.config import EngineConfig, MonitorDefaults
from health.checks.engine import (
    CircuitBreakersCheck,
    EngineCheck,
    ResourceMonitorCheck,
    SessionsCheck,
    set_engine,
)
from health.core import (
    HealthCheckCategory,
    HealthCheckPlugin,
    HealthCheckResult,
    HealthStatus,
)
from health.executor import HealthCheckExecutor
from health.registry import HealthCheckRegistry
from health.router import health_router
from orchestrator.job_manager import JobListView
from orchestrator.runtime import Engine
from worker.echo import EchoRecordProcessor, EchoSessionProvider

from conftest import ScriptedMemoryProbe


# ============================================================================
# FIXTURES
# ============================================================================

def make_check(name, status=HealthStatus.HEALTHY, category="engine",
               required=True, delay=0.0, error=None, calls=None):
    """Build a check plugin instance with fixed behaviour."""

    class _Check(HealthCheckPlugin):
        async def check(self) -> HealthCheckResult:
            if calls is not None:
                calls.append(name)
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            return HealthCheckResult(status=status, message=name)

    _Check.name = name
    _Check.category = HealthCheckCategory(category)
    _Check.priority = _Check.category.default_priority
    _Check.required_for_ready = required
    _Check.timeout_seconds = 0.05
    return _Check()


def make_registry(*checks) -> HealthCheckRegistry:
    registry = HealthCheckRegistry()
    for check in checks:
        registry.register(check)
    return registry


@pytest.fixture
def app_client():
    app = FastAPI()
    app.include_router(health_router)
    return TestClient(app)


@contextmanager
def serving(registry):
    """Patch the global registry lookups used by the router and executor."""
    with patch("health.router.get_registry", return_value=registry), \
            patch("health.executor.get_registry", return_value=registry):
        yield


@pytest.fixture
def engine():
    return Engine(
        EchoSessionProvider(),
        EchoRecordProcessor(),
        EngineConfig(monitor=MonitorDefaults(warning_threshold_mb=500, max_threshold_mb=1000)),
        memory_probe=ScriptedMemoryProbe(100.0),
    )


@pytest.fixture(autouse=True)
def reset_engine():
    yield
    set_engine(None)


# ============================================================================
# CORE & REGISTRY
# ============================================================================

class TestCore:
    """Statuses and results."""

    def test_aggregate_worst_wins(self):
        assert HealthStatus.aggregate([]) == HealthStatus.HEALTHY
        assert HealthStatus.aggregate(
            [HealthStatus.HEALTHY, HealthStatus.DEGRADED]
        ) == HealthStatus.DEGRADED
        assert HealthStatus.aggregate(
            [HealthStatus.UNHEALTHY, HealthStatus.DEGRADED]
        ) == HealthStatus.UNHEALTHY

    def test_result_to_dict(self):
        result = HealthCheckResult.degraded("slow", latency_ms=12)
        assert result.to_dict() == {
            "status": "degraded",
            "duration_ms": 0.0,
            "message": "slow",
            "details": {"latency_ms": 12},
        }

    def test_from_exception(self):
        result = HealthCheckResult.from_exception(ValueError("bad"))
        assert result.status == HealthStatus.UNHEALTHY
        assert result.details == {"exception_type": "ValueError"}


class TestRegistry:
    """HealthCheckRegistry."""

    def test_priority_order(self):
        registry = make_registry(
            make_check("engine", category="engine"),
            make_check("config", category="startup"),
            make_check("breakers", category="resources"),
        )
        assert [c.name for c in registry.get_checks_by_priority()] == [
            "config", "breakers", "engine"
        ]

    def test_required_checks(self):
        registry = make_registry(make_check("a"), make_check("b", required=False))
        assert [c.name for c in registry.get_required_checks()] == ["a"]

    def test_unregister_and_clear(self):
        registry = make_registry(make_check("a"))
        registry.mark_initialized()
        assert "a" in registry
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        registry.clear()
        assert not registry.is_initialized
        assert len(registry) == 0


# ============================================================================
# EXECUTOR
# ============================================================================

class TestExecutor:
    """HealthCheckExecutor."""

    def test_tiers_run_in_priority_order(self):
        calls = []
        registry = make_registry(
            make_check("engine", category="engine", calls=calls),
            make_check("config", category="startup", calls=calls),
        )
        result = asyncio.run(HealthCheckExecutor(registry).execute_all())
        assert calls == ["config", "engine"]
        assert result.status == HealthStatus.HEALTHY

    def test_timeout_marks_unhealthy(self):
        registry = make_registry(make_check("slow", delay=1.0))
        result = asyncio.run(HealthCheckExecutor(registry).execute_all())
        assert result.checks["slow"].status == HealthStatus.UNHEALTHY
        assert "Timeout" in result.checks["slow"].message

    def test_exception_captured(self):
        registry = make_registry(make_check("boom", error=RuntimeError("exploded")))
        result = asyncio.run(HealthCheckExecutor(registry).execute_all())
        assert result.checks["boom"].message == "exploded"
        assert result.status == HealthStatus.UNHEALTHY

    def test_overall_timeout_skips_tiers(self):
        registry = make_registry(make_check("a"))
        result = asyncio.run(HealthCheckExecutor(registry, overall_timeout=0.0).execute_all())
        assert result.checks["a"].message == "Skipped: overall timeout exceeded"

    def test_execute_single_unknown(self):
        executor = HealthCheckExecutor(make_registry())
        assert asyncio.run(executor.execute_single("missing")) is None


# ============================================================================
# ROUTER
# ============================================================================

class TestRouter:
    """Probe endpoints."""

    def test_livez(self, app_client):
        body = app_client.get("/livez").json()
        assert body["status"] == "alive"
        assert "version" in body

    @pytest.mark.parametrize("status,code", [
        (HealthStatus.HEALTHY, 200),
        (HealthStatus.DEGRADED, 206),
        (HealthStatus.UNHEALTHY, 503),
    ])
    def test_health_status_codes(self, app_client, status, code):
        registry = make_registry(make_check("only", status=status))
        with serving(registry):
            response = app_client.get("/health")
        assert response.status_code == code
        assert response.json()["summary"]["engine"][status.value] == 1

    def test_readyz_ignores_optional_checks(self, app_client):
        registry = make_registry(
            make_check("required"),
            make_check("optional", status=HealthStatus.UNHEALTHY, required=False),
        )
        with serving(registry):
            response = app_client.get("/readyz")
        assert response.status_code == 200
        assert response.json()["checks_passed"] == 1

    def test_readyz_not_ready(self, app_client):
        registry = make_registry(make_check("required", status=HealthStatus.UNHEALTHY))
        with serving(registry):
            response = app_client.get("/readyz")
        assert response.status_code == 503
        assert list(response.json()["checks"]) == ["required"]

    def test_single_check(self, app_client):
        registry = make_registry(make_check("one", status=HealthStatus.DEGRADED))
        with serving(registry):
            assert app_client.get("/health/one").status_code == 206
            assert app_client.get("/health/nope").status_code == 404


# ============================================================================
# ENGINE CHECKS
# ============================================================================

class TestEngineChecks:
    """Checks that read the engine."""

    def test_not_initialized(self):
        for check in (CircuitBreakersCheck(), ResourceMonitorCheck(), SessionsCheck(), EngineCheck()):
            result = asyncio.run(check.check())
            assert result.status == HealthStatus.UNHEALTHY
            assert result.message == "Engine not initialized"

    def test_breakers_closed_then_open(self, engine):
        set_engine(engine)
        assert asyncio.run(CircuitBreakersCheck().check()).status == HealthStatus.HEALTHY

        engine.breaker.force_open("test")
        result = asyncio.run(CircuitBreakersCheck().check())
        assert result.status == HealthStatus.UNHEALTHY
        assert "session-acquisition" in result.message

    def test_monitor_not_running_is_degraded(self, engine):
        set_engine(engine)
        result = asyncio.run(ResourceMonitorCheck().check())
        assert result.status == HealthStatus.DEGRADED
        assert result.message == "Resource monitor not running"

    def test_monitor_exhausted(self, engine):
        set_engine(engine)
        engine.monitor._probe = ScriptedMemoryProbe(1500.0)
        asyncio.run(engine.monitor.sample())
        assert asyncio.run(ResourceMonitorCheck().check()).status == HealthStatus.UNHEALTHY

    def test_sessions_reports_open_breaker(self, engine):
        set_engine(engine)
        assert asyncio.run(SessionsCheck().check()).status == HealthStatus.HEALTHY

        engine.breaker.force_open("test")
        result = asyncio.run(SessionsCheck().check())
        assert result.status == HealthStatus.DEGRADED
        assert "is open" in result.message

    def test_engine_stopped(self, engine):
        set_engine(engine)
        result = asyncio.run(EngineCheck().check())
        assert result.status == HealthStatus.UNHEALTHY

    def test_engine_running(self):
        engine = MagicMock()
        engine.is_running = True
        engine.uptime_seconds = 12.5
        engine.jobs.stats = {"queue_depth": 2, "jobs_total": 3}
        engine.jobs.list_jobs.return_value = JobListView(is_processing=True, active_job_id="j1")
        set_engine(engine)

        result = asyncio.run(EngineCheck().check())

        assert result.status == HealthStatus.HEALTHY
        assert result.message == "Engine running (2 queued, processing)"
        assert result.details["active_job_id"] == "j1"
        assert result.details["jobs_total"] == 3
