# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the batch engine.
"""

from core.config.defaults import (
    JobDefaults,
    CircuitBreakerDefaults,
    MonitorDefaults,
    SessionDefaults,
    StatusSinkDefaults,
    EngineConfig,
    get_config,
    reset_config,
)

__all__ = [
    "JobDefaults",
    "CircuitBreakerDefaults",
    "MonitorDefaults",
    "SessionDefaults",
    "StatusSinkDefaults",
    "EngineConfig",
    "get_config",
    "reset_config",
]
