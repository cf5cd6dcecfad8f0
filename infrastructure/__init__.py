# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Session, breaker and resource management
# PURPOSE: Protect the external session resource and the process memory
# CREATED: 18 OCT 2026
# ============================================================================
"""
Infrastructure module for the batch engine.

Provides:
- CircuitBreaker / CircuitBreakerRegistry: Failure-window gate per service
- ResourceMonitor: Memory sampling, forced reclamation, stale sweeps
- SessionManager: Session acquisition and idempotent release

Usage:
    from infrastructure import CircuitBreakerRegistry, ResourceMonitor, SessionManager

    breakers = CircuitBreakerRegistry(config.breaker)
    monitor = ResourceMonitor(config.monitor)
    sessions = SessionManager(provider, breakers.get("session-acquisition"), monitor)
"""

from infrastructure.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    BreakerEvent,
)
from infrastructure.resource_monitor import (
    ResourceMonitor,
    MemorySample,
    MonitorEvent,
    psutil_memory_probe,
)
from infrastructure.session_manager import (
    SessionManager,
    AcquireResult,
)

__all__ = [
    # Circuit breaker
    'CircuitBreaker',
    'CircuitBreakerRegistry',
    'CircuitOpenError',
    'BreakerEvent',
    # Resource monitor
    'ResourceMonitor',
    'MemorySample',
    'MonitorEvent',
    'psutil_memory_probe',
    # Sessions
    'SessionManager',
    'AcquireResult',
]
