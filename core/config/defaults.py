# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for jobs, breaker, monitor, sessions, status
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides defaults for every engine component. Values are read once at
process start and are immutable for the process lifetime.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides (from_env)
- validate() collects every problem instead of stopping at the first
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


# Hard limits on batch sizing
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000


def _env_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment variable ("true"/"1" are truthy)."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class JobDefaults:
    """
    Defaults for job scheduling.

    Controls batch sizing, batch timeout, pacing and retention.
    """
    batch_size: int = 50
    # A batch is retried at most once; values above 1 are clamped.
    max_batch_retries: int = 1
    batch_timeout_seconds: float = 300.0
    inter_batch_delay_seconds: float = 2.0

    # Backoff cap for progressive recovery delays
    max_backoff_ms: int = 30000

    # Garbage collection of terminal jobs
    retention_seconds: float = 24 * 3600.0
    cleanup_interval_seconds: float = 3600.0

    # Duration estimate used by the submission API. This is observed
    # throughput per record, not a bound: batch_timeout_seconds limits one
    # batch attempt and must be raised along with batch_size.
    seconds_per_record: float = 24.0

    # Status sink publication bound
    status_publish_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "JobDefaults":
        """Create from environment variables."""
        return cls(
            batch_size=int(os.getenv("BATCH_SIZE", 50)),
            max_batch_retries=int(os.getenv("MAX_BATCH_RETRIES", 1)),
            batch_timeout_seconds=float(os.getenv("BATCH_TIMEOUT_SECONDS", 300)),
            inter_batch_delay_seconds=float(os.getenv("INTER_BATCH_DELAY_SECONDS", 2)),
            max_backoff_ms=int(os.getenv("MAX_BACKOFF_MS", 30000)),
            retention_seconds=float(os.getenv("JOB_RETENTION_SECONDS", 24 * 3600)),
            cleanup_interval_seconds=float(os.getenv("JOB_CLEANUP_INTERVAL_SECONDS", 3600)),
            seconds_per_record=float(os.getenv("SECONDS_PER_RECORD", 24)),
            status_publish_timeout_seconds=float(
                os.getenv("STATUS_PUBLISH_TIMEOUT_SECONDS", 10)
            ),
        )


@dataclass(frozen=True)
class CircuitBreakerDefaults:
    """
    Defaults for circuit breakers.

    One breaker per protected service (e.g. "session-acquisition").
    """
    enabled: bool = True
    failure_threshold: int = 5
    reset_timeout_seconds: float = 300.0
    monitoring_period_seconds: float = 60.0
    check_interval_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "CircuitBreakerDefaults":
        """Create from environment variables."""
        return cls(
            enabled=_env_bool("CIRCUIT_BREAKER_ENABLED", True),
            failure_threshold=int(os.getenv("CIRCUIT_BREAKER_FAILURE_THRESHOLD", 5)),
            reset_timeout_seconds=float(
                os.getenv("CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS", 300)
            ),
            monitoring_period_seconds=float(
                os.getenv("CIRCUIT_BREAKER_MONITORING_PERIOD_SECONDS", 60)
            ),
            check_interval_seconds=float(
                os.getenv("CIRCUIT_BREAKER_CHECK_INTERVAL_SECONDS", 30)
            ),
        )


@dataclass(frozen=True)
class MonitorDefaults:
    """
    Defaults for the resource monitor.

    Memory levels are resident set size in MB.
    """
    warning_threshold_mb: int = 512
    max_threshold_mb: int = 1024
    gc_threshold_mb: int = 256
    enable_gc: bool = True
    gc_min_interval_seconds: float = 60.0
    check_interval_seconds: float = 30.0
    warning_bucket_mb: int = 100
    warning_cooldown_seconds: float = 300.0
    history_size: int = 10

    # Handles older or idler than this are force-released
    resource_timeout_seconds: float = 600.0

    @classmethod
    def from_env(cls) -> "MonitorDefaults":
        """Create from environment variables."""
        return cls(
            warning_threshold_mb=int(os.getenv("MEMORY_THRESHOLD_MB", 512)),
            max_threshold_mb=int(os.getenv("MAX_MEMORY_USAGE_MB", 1024)),
            gc_threshold_mb=int(os.getenv("GC_THRESHOLD_MB", 256)),
            enable_gc=_env_bool("ENABLE_MANUAL_GC", True),
            check_interval_seconds=float(os.getenv("MEMORY_CHECK_INTERVAL_SECONDS", 30)),
            resource_timeout_seconds=float(os.getenv("RESOURCE_TIMEOUT_SECONDS", 600)),
        )


@dataclass(frozen=True)
class SessionDefaults:
    """
    Defaults for session acquisition.

    Launch retries happen inside a single acquire() call; the circuit
    breaker sees one success or failure per call.
    """
    acquire_timeout_seconds: float = 240.0
    max_launch_attempts: int = 3
    retry_delay_seconds: float = 5.0
    max_retry_delay_seconds: float = 60.0
    max_active_sessions: int = 5
    breaker_name: str = "session-acquisition"

    @classmethod
    def from_env(cls) -> "SessionDefaults":
        """Create from environment variables."""
        return cls(
            acquire_timeout_seconds=float(os.getenv("SESSION_ACQUIRE_TIMEOUT_SECONDS", 240)),
            max_launch_attempts=int(os.getenv("SESSION_MAX_LAUNCH_ATTEMPTS", 3)),
            retry_delay_seconds=float(os.getenv("SESSION_RETRY_DELAY_SECONDS", 5)),
            max_retry_delay_seconds=float(os.getenv("SESSION_MAX_RETRY_DELAY_SECONDS", 60)),
            max_active_sessions=int(os.getenv("MAX_ACTIVE_SESSIONS", 5)),
        )


@dataclass(frozen=True)
class StatusSinkDefaults:
    """Defaults for outbound status events."""
    enabled: bool = True
    webhook_url: Optional[str] = None
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "StatusSinkDefaults":
        """Create from environment variables."""
        return cls(
            enabled=_env_bool("STATUS_UPDATES_ENABLED", True),
            webhook_url=os.getenv("STATUS_WEBHOOK_URL") or None,
            timeout_seconds=float(os.getenv("STATUS_WEBHOOK_TIMEOUT_SECONDS", 10)),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Container for all engine configuration."""
    jobs: JobDefaults = field(default_factory=JobDefaults)
    breaker: CircuitBreakerDefaults = field(default_factory=CircuitBreakerDefaults)
    monitor: MonitorDefaults = field(default_factory=MonitorDefaults)
    sessions: SessionDefaults = field(default_factory=SessionDefaults)
    status: StatusSinkDefaults = field(default_factory=StatusSinkDefaults)

    @classmethod
    def from_env(cls, validate: bool = True) -> "EngineConfig":
        """
        Create all configuration from environment variables.

        Raises:
            ConfigurationError: If validation finds any problem
        """
        config = cls(
            jobs=JobDefaults.from_env(),
            breaker=CircuitBreakerDefaults.from_env(),
            monitor=MonitorDefaults.from_env(),
            sessions=SessionDefaults.from_env(),
            status=StatusSinkDefaults.from_env(),
        )
        if validate:
            problems = config.validate()
            if problems:
                raise ConfigurationError(problems)
        return config

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []

        if not MIN_BATCH_SIZE <= self.jobs.batch_size <= MAX_BATCH_SIZE:
            problems.append(
                f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}"
            )
        if self.jobs.max_batch_retries < 0:
            problems.append("Max batch retries cannot be negative")
        if self.jobs.batch_timeout_seconds <= 0:
            problems.append("Batch timeout must be positive")
        if self.monitor.warning_threshold_mb > self.monitor.max_threshold_mb:
            problems.append("Memory threshold cannot be higher than max memory usage")
        if not 1 <= self.sessions.max_launch_attempts <= 10:
            problems.append("Session max launch attempts must be between 1 and 10")
        if self.sessions.acquire_timeout_seconds <= 0:
            problems.append("Session acquire timeout must be positive")
        if self.breaker.failure_threshold < 1:
            problems.append("Circuit breaker failure threshold must be at least 1")
        if self.status.webhook_url and not self.status.webhook_url.startswith(
            ("http://", "https://")
        ):
            problems.append("Status webhook URL must be http(s)")

        return problems

    def advisories(self) -> List[str]:
        """Non-fatal notes worth logging at startup."""
        notes = []
        expected = self.jobs.batch_size * self.jobs.seconds_per_record
        if expected > self.jobs.batch_timeout_seconds:
            notes.append(
                f"Estimated batch duration {expected:g}s ({self.jobs.batch_size} records x "
                f"{self.jobs.seconds_per_record:g}s) exceeds batch timeout "
                f"{self.jobs.batch_timeout_seconds:g}s"
            )
        return notes

    def summary(self) -> Dict[str, Any]:
        """Short summary for startup logging."""
        return {
            "batch_size": self.jobs.batch_size,
            "batch_timeout": f"{self.jobs.batch_timeout_seconds:g}s",
            "memory_threshold": f"{self.monitor.warning_threshold_mb}MB",
            "max_memory_usage": f"{self.monitor.max_threshold_mb}MB",
            "breaker_threshold": self.breaker.failure_threshold,
            "breaker_reset": f"{self.breaker.reset_timeout_seconds:g}s",
            "circuit_breaker_enabled": self.breaker.enabled,
            "session_launch_attempts": self.sessions.max_launch_attempts,
            "status_webhook": bool(self.status.webhook_url),
        }


_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the process-wide configuration (loaded once from the environment)."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
        logger.info(f"Configuration loaded: {_config.summary()}")
        for note in _config.advisories():
            logger.warning(f"Configuration: {note}")
    return _config


def reset_config() -> None:
    """Reset cached configuration (for testing)."""
    global _config
    _config = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MIN_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "JobDefaults",
    "CircuitBreakerDefaults",
    "MonitorDefaults",
    "SessionDefaults",
    "StatusSinkDefaults",
    "EngineConfig",
    "get_config",
    "reset_config",
]
