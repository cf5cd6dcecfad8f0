# ============================================================================
# ENGINE RUNTIME
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Core - Component wiring and lifecycle
# PURPOSE: Build the engine graph once and start/stop it as a unit
# CREATED: 18 OCT 2026
# ============================================================================
"""
Engine Runtime

The only place that knows the full component graph:

    ResourceMonitor ─┐
    CircuitBreaker ──┼─> SessionManager ─> JobManager ─> StatusSink
    ErrorClassifier ─┘

Wiring:
- monitor.bind_reclaimer(session_manager): forced reclamation and stale sweeps
- monitor listener -> job_manager.on_monitor_event (exhaustion pauses work)
- breaker listener -> job_manager.on_breaker_event (re-queue paused jobs)

Usage:
    engine = Engine(provider, processor, EngineConfig.from_env())
    await engine.start()
    job_id = await engine.jobs.submit(records)
    ...
    await engine.stop()
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from core.config import EngineConfig
from infrastructure.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from infrastructure.resource_monitor import MemorySample, ResourceMonitor, psutil_memory_probe
from infrastructure.session_manager import SessionManager
from orchestrator.job_manager import JobManager
from services.status_sink import StatusSink, build_status_sink
from worker.contracts import RecordProcessor, SessionProvider

logger = logging.getLogger(__name__)


class Engine:
    """
    Bundle of every engine component with one start/stop lifecycle.
    """

    def __init__(
        self,
        provider: SessionProvider,
        processor: RecordProcessor,
        config: Optional[EngineConfig] = None,
        status_sink: Optional[StatusSink] = None,
        memory_probe: Callable[[], MemorySample] = psutil_memory_probe,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.config = config or EngineConfig()

        self.breakers = CircuitBreakerRegistry(self.config.breaker, clock=clock)
        self.breaker: CircuitBreaker = self.breakers.get(self.config.sessions.breaker_name)
        self.monitor = ResourceMonitor(self.config.monitor, memory_probe=memory_probe, clock=clock)
        self.sessions = SessionManager(
            provider,
            self.breaker,
            monitor=self.monitor,
            config=self.config.sessions,
            sleep=sleep,
        )
        self.status_sink = status_sink if status_sink is not None else build_status_sink(
            self.config.status
        )
        self.jobs = JobManager(
            self.sessions,
            processor,
            config=self.config.jobs,
            status_sink=self.status_sink,
            sleep=sleep,
        )

        self.monitor.bind_reclaimer(self.sessions)
        self.monitor.add_listener(self.jobs.on_monitor_event)
        self.breaker.add_listener(self.jobs.on_breaker_event)

        self._started_at: Optional[datetime] = None

    @classmethod
    def from_env(cls, provider: SessionProvider, processor: RecordProcessor) -> "Engine":
        """Build from environment configuration (raises ConfigurationError)."""
        return cls(provider, processor, EngineConfig.from_env())

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    @property
    def uptime_seconds(self) -> Optional[float]:
        if self._started_at is None:
            return None
        return (datetime.utcnow() - self._started_at).total_seconds()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Engine already running")
            return
        logger.info(f"Starting engine: {self.config.summary()}")
        await self.monitor.start()
        await self.breakers.start_all()
        await self.jobs.start()
        self._started_at = datetime.utcnow()
        logger.info("Engine started")

    async def stop(self) -> None:
        if not self.is_running:
            return
        logger.info("Stopping engine...")
        await self.jobs.stop()
        await self.sessions.release_all("shutdown")
        await self.breakers.stop_all()
        await self.monitor.stop()
        await self.status_sink.close()
        self._started_at = None
        logger.info("Engine stopped")

    def resources(self) -> Dict[str, Any]:
        """Session, monitor and breaker state for the resources endpoint."""
        return {
            "sessions": self.sessions.stats,
            "monitor": self.monitor.metrics(),
            "circuit_breakers": self.breakers.metrics(),
        }


__all__ = ["Engine"]
