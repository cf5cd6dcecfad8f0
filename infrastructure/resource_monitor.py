# ============================================================================
# RESOURCE MONITOR
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Memory sampling and stale-handle sweeps
# PURPOSE: Bound process memory and reap abandoned sessions
# CREATED: 18 OCT 2026
# ============================================================================
"""
Resource Monitor

Samples resident memory on a timer (psutil), classifies it against a soft
warning threshold and a hard maximum, and owns the periodic stale-handle
sweep.

Design:
- WARNING events are debounced per 100 MB bucket; a bucket re-arms after
  a cooldown window
- Above gc_threshold_mb, gc.collect() runs at most once a minute
- Above max_threshold_mb: EXHAUSTION is emitted, then force_reclaim()
  releases every tracked session through the reclaimer
- The reclaimer (SessionManager) is bound after construction to avoid a
  construction cycle
- Listeners may be plain functions or coroutines

Usage:
    monitor = ResourceMonitor(config)
    monitor.bind_reclaimer(session_manager)
    monitor.add_listener(job_manager.on_monitor_event)
    await monitor.start()
"""

import asyncio
import gc
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Union

import psutil

from core.config import MonitorDefaults
from core.contracts import ThresholdKind

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


# ============================================================================
# DATA
# ============================================================================

@dataclass
class MemorySample:
    """One memory reading in MB."""
    rss_mb: float
    vms_mb: float = 0.0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rss_mb": round(self.rss_mb, 1),
            "vms_mb": round(self.vms_mb, 1),
            "timestamp": self.timestamp.isoformat() + "Z",
        }


@dataclass
class MonitorEvent:
    """Notification delivered to monitor listeners."""
    kind: ThresholdKind
    rss_mb: float = 0.0
    threshold_mb: float = 0.0
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _TrackedHandle:
    handle_id: str
    job_id: Optional[str]
    registered_at: float
    last_activity: float


class ResourceReclaimer(Protocol):
    """What the monitor needs from the session manager."""

    async def reap_stale(self) -> List[str]: ...

    async def release_all(self, reason: str) -> int: ...


MonitorListener = Callable[[MonitorEvent], Union[None, Awaitable[None]]]


def psutil_memory_probe() -> MemorySample:
    """Read this process's memory usage via psutil."""
    info = psutil.Process().memory_info()
    return MemorySample(rss_mb=info.rss / BYTES_PER_MB, vms_mb=info.vms / BYTES_PER_MB)


# ============================================================================
# MONITOR
# ============================================================================

class ResourceMonitor:
    """
    Periodic memory sampler and stale-handle tracker.
    """

    def __init__(
        self,
        config: Optional[MonitorDefaults] = None,
        memory_probe: Callable[[], MemorySample] = psutil_memory_probe,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or MonitorDefaults()
        self._probe = memory_probe
        self._clock = clock
        self._lock = threading.Lock()

        self._handles: Dict[str, _TrackedHandle] = {}
        self._history: Deque[MemorySample] = deque(maxlen=self.config.history_size)
        self._warning_buckets: Dict[int, float] = {}  # bucket -> armed-again-at
        self._last_gc_at: Optional[float] = None

        self._listeners: List[MonitorListener] = []
        self._reclaimer: Optional[ResourceReclaimer] = None

        self._samples_taken = 0
        self._warnings_emitted = 0
        self._exhaustions = 0
        self._reclaims = 0
        self._gc_runs = 0

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # =========================================================================
    # WIRING
    # =========================================================================

    def bind_reclaimer(self, reclaimer: ResourceReclaimer) -> None:
        self._reclaimer = reclaimer

    def add_listener(self, listener: MonitorListener) -> None:
        self._listeners.append(listener)

    async def _emit(self, event: MonitorEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning(f"Monitor listener failed on {event.kind.value}: {e}")

    # =========================================================================
    # HANDLE TRACKING
    # =========================================================================

    def register(self, handle_id: str, job_id: Optional[str] = None) -> None:
        now = self._clock()
        with self._lock:
            self._handles[handle_id] = _TrackedHandle(handle_id, job_id, now, now)
        logger.debug(f"Tracking session {handle_id[:8]} for job {job_id}")

    def touch(self, handle_id: str) -> None:
        with self._lock:
            tracked = self._handles.get(handle_id)
            if tracked:
                tracked.last_activity = self._clock()

    def unregister(self, handle_id: str) -> bool:
        with self._lock:
            return self._handles.pop(handle_id, None) is not None

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def stale_handles(self) -> List[str]:
        """Handles whose age or inactivity exceeds resource_timeout_seconds."""
        ceiling = self.config.resource_timeout_seconds
        now = self._clock()
        with self._lock:
            return [
                t.handle_id for t in self._handles.values()
                if now - t.registered_at > ceiling or now - t.last_activity > ceiling
            ]

    # =========================================================================
    # SAMPLING
    # =========================================================================

    @property
    def latest(self) -> Optional[MemorySample]:
        with self._lock:
            return self._history[-1] if self._history else None

    @property
    def is_warning(self) -> bool:
        latest = self.latest
        return latest is not None and latest.rss_mb > self.config.warning_threshold_mb

    @property
    def is_exhausted(self) -> bool:
        latest = self.latest
        return latest is not None and latest.rss_mb > self.config.max_threshold_mb

    async def sample(self) -> MemorySample:
        """
        Take one reading and act on it.

        Order: record -> warning -> gc hint -> exhaustion -> stale sweep.
        """
        reading = self._probe()
        now = self._clock()
        rss = reading.rss_mb
        cfg = self.config

        emit_warning = False
        with self._lock:
            self._history.append(reading)
            self._samples_taken += 1

            if rss > cfg.warning_threshold_mb:
                bucket = int(rss // cfg.warning_bucket_mb) * cfg.warning_bucket_mb
                rearm_at = self._warning_buckets.get(bucket)
                if rearm_at is None or now >= rearm_at:
                    self._warning_buckets[bucket] = now + cfg.warning_cooldown_seconds
                    self._warnings_emitted += 1
                    emit_warning = True

            run_gc = (
                cfg.enable_gc
                and rss > cfg.gc_threshold_mb
                and (self._last_gc_at is None or now - self._last_gc_at >= cfg.gc_min_interval_seconds)
            )
            if run_gc:
                self._last_gc_at = now

            tracked = len(self._handles)

        if self._samples_taken % 10 == 0 or rss > cfg.warning_threshold_mb:
            logger.info(f"Memory usage: RSS {rss:.0f}MB, sessions tracked: {tracked}")

        if emit_warning:
            logger.warning(
                f"Memory usage warning: {rss:.0f}MB (threshold: {cfg.warning_threshold_mb}MB)"
            )
            await self._emit(MonitorEvent(
                kind=ThresholdKind.WARNING,
                rss_mb=rss,
                threshold_mb=cfg.warning_threshold_mb,
            ))

        if run_gc:
            self._collect_garbage()

        if rss > cfg.max_threshold_mb:
            with self._lock:
                self._exhaustions += 1
            logger.error(
                f"Memory usage exceeded maximum limit: {rss:.0f}MB > {cfg.max_threshold_mb}MB"
            )
            await self._emit(MonitorEvent(
                kind=ThresholdKind.EXHAUSTION,
                rss_mb=rss,
                threshold_mb=cfg.max_threshold_mb,
            ))
            await self.force_reclaim("memory_exhaustion")

        await self.sweep_stale()
        return reading

    async def sweep_stale(self) -> List[str]:
        """Ask the reclaimer to force-release aged or idle sessions."""
        if self._reclaimer is None:
            return []
        reaped = await self._reclaimer.reap_stale()
        for handle_id in reaped:
            await self._emit(MonitorEvent(
                kind=ThresholdKind.STALE_HANDLE,
                detail={"handle_id": handle_id},
            ))
        return reaped

    async def force_reclaim(self, reason: str = "forced") -> int:
        """Release every tracked session immediately and collect garbage."""
        logger.warning(f"Forced reclamation: {reason}")
        released = 0
        if self._reclaimer is not None:
            released = await self._reclaimer.release_all(reason)
        self._collect_garbage()
        with self._lock:
            self._reclaims += 1
        latest = self.latest
        await self._emit(MonitorEvent(
            kind=ThresholdKind.RECLAIMED,
            rss_mb=latest.rss_mb if latest else 0.0,
            detail={"released": released, "reason": reason},
        ))
        logger.warning(f"Forced reclamation completed: released {released} session(s)")
        return released

    def _collect_garbage(self) -> None:
        collected = gc.collect()
        with self._lock:
            self._gc_runs += 1
        logger.debug(f"Garbage collection collected {collected} objects")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Resource monitor already running")
            return
        logger.info(
            f"Starting resource monitor: warning={self.config.warning_threshold_mb}MB, "
            f"max={self.config.max_threshold_mb}MB, "
            f"interval={self.config.check_interval_seconds:g}s"
        )
        self._stop_event.clear()
        self._task = asyncio.create_task(self._monitor_loop(), name="resource-monitor")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Resource monitor stopped")

    async def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sample()
            except Exception as e:
                logger.error(f"Resource monitor sample failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.config.check_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # METRICS
    # =========================================================================

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            latest = self._history[-1] if self._history else None
            rss = latest.rss_mb if latest else 0.0
            return {
                "memory": latest.to_dict() if latest else None,
                "history": [s.to_dict() for s in self._history],
                "tracked_sessions": len(self._handles),
                "thresholds": {
                    "warning_mb": self.config.warning_threshold_mb,
                    "max_mb": self.config.max_threshold_mb,
                    "gc_mb": self.config.gc_threshold_mb,
                },
                "warnings": {
                    "memory_threshold": rss > self.config.warning_threshold_mb,
                    "memory_exhaustion": rss > self.config.max_threshold_mb,
                    "gc_needed": rss > self.config.gc_threshold_mb,
                },
                "counters": {
                    "samples": self._samples_taken,
                    "warnings": self._warnings_emitted,
                    "exhaustions": self._exhaustions,
                    "reclaims": self._reclaims,
                    "gc_runs": self._gc_runs,
                },
            }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MemorySample",
    "MonitorEvent",
    "ResourceReclaimer",
    "ResourceMonitor",
    "psutil_memory_probe",
]
