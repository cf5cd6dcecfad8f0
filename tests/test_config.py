# ============================================================================
# CONFIGURATION TESTS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Tests - Environment configuration
# PURPOSE: Verify env parsing, validation problems and the cached config
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Tests

Covers:
1. Defaults when the environment is empty
2. Environment overrides, including boolean parsing
3. validate() reports every problem; from_env() raises ConfigurationError
4. get_config() caches until reset_config()

Run with:
    pytest tests/test_config.py -v
"""

import pytest
from dataclasses import FrozenInstanceError

from core.config import (
    CircuitBreakerDefaults,
    EngineConfig,
    JobDefaults,
    MonitorDefaults,
    SessionDefaults,
    StatusSinkDefaults,
    get_config,
    reset_config,
)
from core.errors import ConfigurationError


ENV_VARS = [
    "BATCH_SIZE",
    "MAX_BATCH_RETRIES",
    "BATCH_TIMEOUT_SECONDS",
    "MEMORY_THRESHOLD_MB",
    "MAX_MEMORY_USAGE_MB",
    "ENABLE_MANUAL_GC",
    "CIRCUIT_BREAKER_ENABLED",
    "CIRCUIT_BREAKER_FAILURE_THRESHOLD",
    "SESSION_MAX_LAUNCH_ATTEMPTS",
    "STATUS_WEBHOOK_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestDefaults:
    """Empty environment."""

    def test_from_env_matches_dataclass_defaults(self):
        config = EngineConfig.from_env()
        assert config.jobs == JobDefaults()
        assert config.breaker == CircuitBreakerDefaults()
        assert config.monitor == MonitorDefaults()
        assert config.sessions == SessionDefaults()
        assert config.status == StatusSinkDefaults()

    def test_defaults_are_valid(self):
        assert EngineConfig().validate() == []

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            JobDefaults().batch_size = 10


class TestEnvironment:
    """Overrides from the environment."""

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "25")
        monkeypatch.setenv("MEMORY_THRESHOLD_MB", "700")
        monkeypatch.setenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", "2")
        monkeypatch.setenv("STATUS_WEBHOOK_URL", "https://hooks.local/status")

        config = EngineConfig.from_env()

        assert config.jobs.batch_size == 25
        assert config.monitor.warning_threshold_mb == 700
        assert config.breaker.failure_threshold == 2
        assert config.status.webhook_url == "https://hooks.local/status"
        assert config.summary()["status_webhook"] is True

    @pytest.mark.parametrize("value,expected", [
        ("true", True),
        ("1", True),
        ("YES", True),
        ("false", False),
        ("0", False),
        ("", True),
    ])
    def test_boolean_parsing(self, monkeypatch, value, expected):
        monkeypatch.setenv("CIRCUIT_BREAKER_ENABLED", value)
        assert CircuitBreakerDefaults.from_env().enabled is expected

    def test_unparseable_number(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "many")
        with pytest.raises(ValueError):
            EngineConfig.from_env()


class TestValidation:
    """Problem reporting."""

    def test_every_problem_reported(self):
        config = EngineConfig(
            jobs=JobDefaults(batch_size=0, batch_timeout_seconds=0),
            monitor=MonitorDefaults(warning_threshold_mb=2048, max_threshold_mb=1024),
            sessions=SessionDefaults(max_launch_attempts=11),
            breaker=CircuitBreakerDefaults(failure_threshold=0),
            status=StatusSinkDefaults(webhook_url="ftp://hooks.local"),
        )
        problems = config.validate()
        assert len(problems) == 6
        assert "Memory threshold cannot be higher than max memory usage" in problems

    def test_from_env_raises(self, monkeypatch):
        monkeypatch.setenv("MEMORY_THRESHOLD_MB", "2048")
        monkeypatch.setenv("MAX_MEMORY_USAGE_MB", "1024")

        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_env()

        assert exc_info.value.problems == [
            "Memory threshold cannot be higher than max memory usage"
        ]

    def test_estimate_beyond_timeout_is_advisory(self):
        config = EngineConfig()
        assert config.validate() == []
        assert config.advisories() == [
            "Estimated batch duration 1200s (50 records x 24s) exceeds batch timeout 300s"
        ]

    def test_no_advisory_when_timeout_scales(self):
        config = EngineConfig(jobs=JobDefaults(batch_size=10, batch_timeout_seconds=300))
        assert config.advisories() == []

    def test_validation_can_be_skipped(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "0")
        assert EngineConfig.from_env(validate=False).jobs.batch_size == 0


class TestCachedConfig:
    """get_config() / reset_config()."""

    def test_cached_until_reset(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("BATCH_SIZE", "10")
        assert get_config() is first

        reset_config()
        assert get_config().jobs.batch_size == 10
