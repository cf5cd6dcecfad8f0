# ============================================================================
# SESSION MANAGER
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Session acquisition, release and janitorial cleanup
# PURPOSE: Own the expensive external session behind a circuit breaker
# CREATED: 18 OCT 2026
# ============================================================================
"""
Session Manager

Acquires and releases the external session handle for one job at a time.

Acquisition:
    1. Circuit breaker gate (denied -> circuit_open, no launch attempted)
    2. Memory gate (monitor exhausted -> resource_exhaustion)
    3. provider.create_session() under acquire_timeout_seconds, retried up
       to max_launch_attempts with exponential backoff and jitter; stale
       and zombie sessions are reaped before each retry
    4. One success/failure reported to the breaker per acquire() call,
       none if the call is cancelled mid-launch
    5. Handle registered with the resource monitor for staleness tracking

Release is idempotent: normal completion, crash recovery, job failure,
forced reclamation and shutdown may all race to release the same handle.

Expected outcomes are results (AcquireResult), not exceptions.
"""

import asyncio
import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from core.config import SessionDefaults
from core.contracts import CircuitState
from infrastructure.circuit_breaker import CircuitBreaker, CircuitOpenError
from infrastructure.resource_monitor import ResourceMonitor
from services.error_classifier import ClassifiedError, ErrorContext, classify
from worker.contracts import ResourceExhaustedError, SessionHandle, SessionProvider

logger = logging.getLogger(__name__)

# Rolling window for average acquisition time
ACQUIRE_TIMES_KEPT = 50


@dataclass
class AcquireResult:
    """Either a live handle or the classified reason there is none."""
    handle: Optional[SessionHandle] = None
    error: Optional[ClassifiedError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.handle is not None


class SessionManager:
    """
    Session acquisition and cleanup for the batch engine.
    """

    def __init__(
        self,
        provider: SessionProvider,
        breaker: CircuitBreaker,
        monitor: Optional[ResourceMonitor] = None,
        config: Optional[SessionDefaults] = None,
        classifier: Callable[..., ClassifiedError] = classify,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.provider = provider
        self.breaker = breaker
        self.monitor = monitor
        self.config = config or SessionDefaults()
        self._classify = classifier
        self._sleep = sleep

        self._lock = threading.Lock()
        self._active: Dict[str, SessionHandle] = {}

        self._total_acquisitions = 0
        self._successful = 0
        self._failed = 0
        self._rejected = 0
        self._releases = 0
        self._reaped = 0
        self._zombies = 0
        self._acquire_times_ms: Deque[float] = deque(maxlen=ACQUIRE_TIMES_KEPT)

    # =========================================================================
    # ACQUIRE
    # =========================================================================

    async def acquire(self, job_id: Optional[str] = None) -> AcquireResult:
        """
        Acquire a session for a job.

        Returns:
            AcquireResult with a handle, or with a ClassifiedError
        """
        context = ErrorContext(operation="session_acquire", job_id=job_id)
        with self._lock:
            self._total_acquisitions += 1

        if not self.breaker.can_execute():
            with self._lock:
                self._rejected += 1
            error = CircuitOpenError(self.breaker.name, self.breaker.time_until_retry())
            logger.warning(f"Session acquisition blocked for job {job_id}: {error}")
            return AcquireResult(error=self._classify(error, context))

        if self.monitor is not None and self.monitor.is_exhausted:
            latest = self.monitor.latest
            usage = latest.rss_mb if latest else None
            error = ResourceExhaustedError(
                f"Memory exhausted: {usage:.0f}MB > {self.monitor.config.max_threshold_mb}MB"
                if usage is not None else "Memory exhausted",
                usage_mb=usage,
            )
            # Nothing was attempted; hand back the probe slot without a verdict
            self.breaker.cancel_attempt()
            with self._lock:
                self._rejected += 1
            logger.error(f"Session acquisition refused for job {job_id}: {error}")
            return AcquireResult(error=self._classify(error, context))

        try:
            return await self._launch(job_id, context)
        except asyncio.CancelledError:
            # Cancelled before any verdict (shutdown mid-launch)
            self.breaker.cancel_attempt()
            logger.warning(f"Session acquisition for job {job_id} cancelled")
            raise

    async def _launch(self, job_id: Optional[str], context: ErrorContext) -> AcquireResult:
        """Launch attempts with backoff; reports exactly one breaker verdict."""
        start = time.monotonic()
        last_error: Optional[BaseException] = None
        attempts = 0
        for attempt in range(1, self.config.max_launch_attempts + 1):
            attempts = attempt
            if attempt > 1:
                await self.reap_stale()
            try:
                resource = await asyncio.wait_for(
                    self.provider.create_session(),
                    timeout=self.config.acquire_timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = asyncio.TimeoutError(
                    f"Session launch timed out after {self.config.acquire_timeout_seconds:g}s"
                )
            except Exception as e:
                last_error = e
            else:
                handle = SessionHandle(resource=resource, job_id=job_id)
                elapsed_ms = (time.monotonic() - start) * 1000
                with self._lock:
                    self._active[handle.id] = handle
                    self._successful += 1
                    self._acquire_times_ms.append(elapsed_ms)
                if self.monitor is not None:
                    self.monitor.register(handle.id, job_id)
                self.breaker.record_success()
                logger.info(
                    f"Session {handle.id[:8]} acquired for job {job_id} "
                    f"in {elapsed_ms:.0f}ms (attempt {attempt})"
                )
                return AcquireResult(handle=handle, attempts=attempts)

            logger.warning(
                f"Session launch attempt {attempt}/{self.config.max_launch_attempts} "
                f"failed for job {job_id}: {last_error}"
            )
            if attempt < self.config.max_launch_attempts:
                await self._sleep(self._launch_backoff(attempt))

        with self._lock:
            self._failed += 1
        self.breaker.record_failure(last_error)
        classified = self._classify(last_error, context)
        logger.error(
            f"Session acquisition failed for job {job_id} after {attempts} attempt(s): "
            f"{classified.kind.value}: {classified.message}"
        )
        return AcquireResult(error=classified, attempts=attempts)

    def _launch_backoff(self, attempt: int) -> float:
        """Exponential backoff with up to 10% jitter, capped."""
        base = self.config.retry_delay_seconds * (2 ** (attempt - 1))
        delay = min(base, self.config.max_retry_delay_seconds)
        return delay + random.uniform(0, delay * 0.1)

    # =========================================================================
    # RELEASE
    # =========================================================================

    async def release(self, handle: Optional[SessionHandle], reason: str = "released") -> bool:
        """
        Release a session. Idempotent.

        Returns:
            True if this call released the handle, False if it was already
            released or never acquired
        """
        if handle is None:
            return False
        with self._lock:
            owned = self._active.pop(handle.id, None)
            if owned is not None:
                self._releases += 1
        if owned is None:
            logger.debug(f"Session {handle.id[:8]} already released ({reason})")
            return False

        if self.monitor is not None:
            self.monitor.unregister(handle.id)
        try:
            await self.provider.close_session(owned.resource)
        except Exception as e:
            logger.warning(f"Error closing session {handle.id[:8]}: {e}")
        logger.info(f"Session {handle.id[:8]} released ({reason})")
        return True

    async def release_all(self, reason: str) -> int:
        """Release every active session (shutdown, forced reclamation)."""
        with self._lock:
            handles = list(self._active.values())
        released = 0
        for handle in handles:
            if await self.release(handle, reason):
                released += 1
        if handles:
            logger.warning(f"Released {released} session(s): {reason}")
        return released

    # =========================================================================
    # HEALTH / JANITORIAL
    # =========================================================================

    def is_active(self, handle: SessionHandle) -> bool:
        with self._lock:
            return handle.id in self._active

    def touch(self, handle: SessionHandle) -> None:
        """Refresh last activity so the stale sweep leaves the session alone."""
        handle.touch()
        if self.monitor is not None:
            self.monitor.touch(handle.id)

    async def health_check(self, handle: SessionHandle) -> bool:
        if not self.is_active(handle):
            return False
        try:
            return bool(await self.provider.check_session(handle.resource))
        except Exception as e:
            logger.warning(f"Session {handle.id[:8]} health check failed: {e}")
            return False

    async def reap_stale(self) -> List[str]:
        """
        Force-release stale and zombie sessions.

        Stale: the monitor flags the handle as aged or idle.
        Zombie: the provider reports the session as no longer usable.
        Each reaped session counts as a failure for the breaker.
        """
        reaped = []
        if self.monitor is not None:
            for handle_id in self.monitor.stale_handles():
                with self._lock:
                    handle = self._active.get(handle_id)
                if handle is None:
                    self.monitor.unregister(handle_id)
                    continue
                if await self.release(handle, "stale"):
                    reaped.append(handle_id)
                    with self._lock:
                        self._reaped += 1
                    self.breaker.record_failure(reason=f"stale session {handle_id[:8]} reaped")

        with self._lock:
            remaining = list(self._active.values())
        for handle in remaining:
            if await self.health_check(handle):
                continue
            if await self.release(handle, "zombie"):
                reaped.append(handle.id)
                with self._lock:
                    self._zombies += 1
                self.breaker.record_failure(reason=f"zombie session {handle.id[:8]} reaped")

        if reaped:
            logger.warning(f"Reaped {len(reaped)} stale or zombie session(s)")
        return reaped

    # =========================================================================
    # STATS
    # =========================================================================

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def stats(self) -> Dict[str, Any]:
        with self._lock:
            decided = self._successful + self._failed
            times = list(self._acquire_times_ms)
            return {
                "total_acquisitions": self._total_acquisitions,
                "successful": self._successful,
                "failed": self._failed,
                "rejected": self._rejected,
                "releases": self._releases,
                "reaped": self._reaped,
                "zombies": self._zombies,
                "active": len(self._active),
                "success_rate": (self._successful / decided) if decided else 1.0,
                "average_acquire_ms": (sum(times) / len(times)) if times else 0.0,
            }

    def health_report(self) -> Dict[str, Any]:
        """Summarize problems for the health endpoint."""
        stats = self.stats
        issues = []
        decided = stats["successful"] + stats["failed"]
        if decided > 5 and stats["success_rate"] < 0.8:
            issues.append(f"Low acquisition success rate: {stats['success_rate']:.0%}")
        breaker_state = self.breaker.state
        if breaker_state != CircuitState.CLOSED:
            issues.append(f"Circuit breaker {self.breaker.name} is {breaker_state.value}")
        if self.monitor is not None and self.monitor.is_warning:
            issues.append("Memory usage above warning threshold")
        if stats["active"] > self.config.max_active_sessions:
            issues.append(f"Too many active sessions: {stats['active']}")
        return {
            "healthy": not issues,
            "issues": issues,
            "stats": stats,
            "breaker": self.breaker.metrics(),
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AcquireResult",
    "SessionManager",
]
