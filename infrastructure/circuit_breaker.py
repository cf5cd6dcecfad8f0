# ============================================================================
# CIRCUIT BREAKER
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Infrastructure - Failure-window gate for resource acquisition
# PURPOSE: Stop hammering a failing service until a cool-down elapses
# CREATED: 18 OCT 2026
# ============================================================================
"""
Circuit Breaker

Per-service failure-window tracker with a CLOSED / OPEN / HALF_OPEN state
machine. The session manager consults it before every expensive session
launch.

Design:
- Failures are timestamps in a sliding window (monitoring period)
- CLOSED -> OPEN when the window holds failure_threshold entries
- OPEN -> HALF_OPEN once next_attempt_at passes; exactly one probe
- HALF_OPEN success -> CLOSED (window cleared); failure -> OPEN again
- Counters are monotonic; only reset(clear_statistics=True) zeroes them
- State is guarded by a threading.Lock; listeners run outside the lock

Usage:
    breaker = CircuitBreaker("session-acquisition", config)
    breaker.add_listener(on_breaker_event)

    if breaker.can_execute():
        try:
            session = await launch()
            breaker.record_success()
        except Exception as e:
            breaker.record_failure(e)
"""

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from core.config import CircuitBreakerDefaults
from core.contracts import BreakerEventKind, CircuitState

logger = logging.getLogger(__name__)

# Number of recent failures kept for metrics
RECENT_FAILURES_KEPT = 5


class CircuitOpenError(Exception):
    """Raised when a circuit is open and the call is blocked."""

    def __init__(self, breaker: str, retry_in_seconds: float) -> None:
        self.breaker = breaker
        self.retry_in_seconds = retry_in_seconds
        super().__init__(
            f"Circuit breaker {breaker} is open. Retry in {retry_in_seconds:.1f}s"
        )


@dataclass
class BreakerEvent:
    """Notification delivered to breaker listeners."""
    kind: BreakerEventKind
    breaker: str
    old_state: CircuitState
    new_state: CircuitState
    reason: str = ""


BreakerListener = Callable[[BreakerEvent], Any]


class CircuitBreaker:
    """
    Failure-window circuit breaker for one protected service.

    All methods are synchronous and cheap; the only background activity
    is the optional recovery tick started with start().
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerDefaults] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerDefaults()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_window: Deque[float] = deque()
        self._next_attempt_at: Optional[float] = None
        self._probe_in_flight = False
        self._recovery_announced = False

        # Monotonic counters
        self._total_attempts = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0
        self._consecutive_successes = 0
        self._last_state_change: datetime = datetime.utcnow()
        self._recent_failures: Deque[Dict[str, Any]] = deque(maxlen=RECENT_FAILURES_KEPT)

        self._listeners: List[BreakerListener] = []
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def next_attempt_at(self) -> Optional[float]:
        with self._lock:
            return self._next_attempt_at

    @property
    def failure_count(self) -> int:
        """Failures currently inside the monitoring window."""
        with self._lock:
            self._prune(self._clock())
            return len(self._failure_window)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, listener: BreakerListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: BreakerListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, events: List[BreakerEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    logger.warning(
                        f"Breaker {self.name} listener failed on {event.kind.value}: {e}"
                    )

    # =========================================================================
    # STATE MACHINE (call with lock held)
    # =========================================================================

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.monitoring_period_seconds
        while self._failure_window and self._failure_window[0] < cutoff:
            self._failure_window.popleft()

    def _set_state(
        self,
        new_state: CircuitState,
        now: float,
        reason: str,
        events: List[BreakerEvent],
    ) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._last_state_change = datetime.utcnow()

        if new_state == CircuitState.OPEN:
            self._next_attempt_at = now + self.config.reset_timeout_seconds
            self._probe_in_flight = False
            self._recovery_announced = False
        elif new_state == CircuitState.CLOSED:
            self._next_attempt_at = None
            self._probe_in_flight = False
            self._failure_window.clear()

        logger.info(
            f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value} ({reason})"
        )
        events.append(BreakerEvent(
            kind=BreakerEventKind.STATE_CHANGE,
            breaker=self.name,
            old_state=old_state,
            new_state=new_state,
            reason=reason,
        ))

    # =========================================================================
    # GATE
    # =========================================================================

    def can_execute(self) -> bool:
        """
        Check whether an attempt is allowed right now.

        An allowed call while OPEN past next_attempt_at moves the breaker
        to HALF_OPEN and claims the single probe slot; the caller must
        then report record_success() or record_failure().
        """
        events: List[BreakerEvent] = []
        with self._lock:
            now = self._clock()
            self._prune(now)

            if not self.config.enabled or self._state == CircuitState.CLOSED:
                allowed = True
            elif self._state == CircuitState.OPEN:
                if self._next_attempt_at is not None and now >= self._next_attempt_at:
                    self._set_state(CircuitState.HALF_OPEN, now, "reset timeout elapsed", events)
                    self._probe_in_flight = True
                    allowed = True
                else:
                    allowed = False
            else:
                # HALF_OPEN: only one probe at a time
                if self._probe_in_flight:
                    allowed = False
                else:
                    self._probe_in_flight = True
                    allowed = True

            if allowed:
                self._total_attempts += 1
            else:
                self._total_rejections += 1

        self._notify(events)
        return allowed

    def cancel_attempt(self) -> None:
        """
        Hand back an allowed attempt that never reached a verdict.

        A freed HALF_OPEN slot is announced again by the recovery tick.
        """
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
                self._probe_in_flight = False
                self._recovery_announced = False
                logger.info(f"Circuit breaker {self.name} probe slot handed back")

    def time_until_retry(self) -> float:
        """Seconds until an OPEN breaker lets a probe through (0 otherwise)."""
        with self._lock:
            if self._state != CircuitState.OPEN or self._next_attempt_at is None:
                return 0.0
            return max(0.0, self._next_attempt_at - self._clock())

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def record_success(self) -> None:
        events: List[BreakerEvent] = []
        with self._lock:
            now = self._clock()
            self._total_successes += 1
            self._consecutive_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED, now, "probe succeeded", events)
            self._probe_in_flight = False
        self._notify(events)

    def record_failure(self, error: Optional[BaseException] = None, reason: str = "") -> None:
        events: List[BreakerEvent] = []
        message = reason or (str(error) if error is not None else "failure")
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._failure_window.append(now)
            self._total_failures += 1
            self._consecutive_successes = 0
            self._recent_failures.append({
                "timestamp": datetime.utcnow().isoformat() + "Z",
                "error": message[:500],
                "error_type": type(error).__name__ if error is not None else None,
            })

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN, now, "probe failed", events)
            elif (
                self._state == CircuitState.CLOSED
                and self.config.enabled
                and len(self._failure_window) >= self.config.failure_threshold
            ):
                self._set_state(
                    CircuitState.OPEN,
                    now,
                    f"{len(self._failure_window)} failures within "
                    f"{self.config.monitoring_period_seconds:g}s",
                    events,
                )
            self._probe_in_flight = False

        logger.warning(f"Circuit breaker {self.name} recorded failure: {message[:200]}")
        self._notify(events)

    # =========================================================================
    # MANUAL OVERRIDES
    # =========================================================================

    def force_open(self, reason: str = "manual") -> None:
        events: List[BreakerEvent] = []
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.OPEN:
                self._next_attempt_at = now + self.config.reset_timeout_seconds
            else:
                self._set_state(CircuitState.OPEN, now, f"forced open: {reason}", events)
        self._notify(events)

    def force_close(self, reason: str = "manual") -> None:
        self.reset(reason=f"forced close: {reason}")

    def reset(self, clear_statistics: bool = False, reason: str = "reset") -> None:
        """Return to CLOSED with an empty window, optionally zeroing counters."""
        events: List[BreakerEvent] = []
        with self._lock:
            self._set_state(CircuitState.CLOSED, self._clock(), reason, events)
            self._failure_window.clear()
            self._probe_in_flight = False
            if clear_statistics:
                self._total_attempts = 0
                self._total_failures = 0
                self._total_successes = 0
                self._total_rejections = 0
                self._consecutive_successes = 0
                self._recent_failures.clear()
        self._notify(events)

    # =========================================================================
    # RECOVERY TICK
    # =========================================================================

    def check_recovery(self) -> bool:
        """
        Announce READY_FOR_RECOVERY once per open period.

        Returns True when the breaker is OPEN and past next_attempt_at, or
        HALF_OPEN with the probe slot free.
        """
        events: List[BreakerEvent] = []
        with self._lock:
            now = self._clock()
            self._prune(now)
            if self._state == CircuitState.HALF_OPEN:
                ready = not self._probe_in_flight
            else:
                ready = (
                    self._state == CircuitState.OPEN
                    and self._next_attempt_at is not None
                    and now >= self._next_attempt_at
                )
            if ready and not self._recovery_announced:
                self._recovery_announced = True
                events.append(BreakerEvent(
                    kind=BreakerEventKind.READY_FOR_RECOVERY,
                    breaker=self.name,
                    old_state=self._state,
                    new_state=self._state,
                    reason="reset timeout elapsed",
                ))
        if events:
            logger.info(f"Circuit breaker {self.name} ready for recovery probe")
        self._notify(events)
        return ready

    async def start(self) -> None:
        """Start the periodic recovery tick."""
        if self.is_running:
            logger.warning(f"Circuit breaker {self.name} monitor already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(
            self._monitor_loop(),
            name=f"breaker-{self.name}",
        )

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_recovery()
            except Exception as e:
                logger.error(f"Breaker {self.name} recovery check failed: {e}", exc_info=True)
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
            now = self._clock()
            self._prune(now)
            decided = self._total_successes + self._total_failures
            retry_in = 0.0
            if self._state == CircuitState.OPEN and self._next_attempt_at is not None:
                retry_in = max(0.0, self._next_attempt_at - now)
            return {
                "name": self.name,
                "state": self._state.value,
                "enabled": self.config.enabled,
                "failure_count": len(self._failure_window),
                "failure_threshold": self.config.failure_threshold,
                "total_attempts": self._total_attempts,
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "total_rejections": self._total_rejections,
                "consecutive_successes": self._consecutive_successes,
                "failure_rate": (self._total_failures / decided) if decided else 0.0,
                "seconds_until_retry": round(retry_in, 3),
                "last_state_change": self._last_state_change.isoformat() + "Z",
                "recent_failures": list(self._recent_failures),
            }


class CircuitBreakerRegistry:
    """
    One breaker per protected service, created on first use.

    Owned by the engine; tests build their own instance.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerDefaults] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerDefaults()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self.config, clock=self._clock)
                self._breakers[name] = breaker
                logger.debug(f"Created circuit breaker {name}")
            return breaker

    def find(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    def all(self) -> List[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def metrics(self) -> Dict[str, Dict[str, Any]]:
        return {breaker.name: breaker.metrics() for breaker in self.all()}

    async def start_all(self) -> None:
        for breaker in self.all():
            await breaker.start()

    async def stop_all(self) -> None:
        for breaker in self.all():
            await breaker.stop()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CircuitOpenError",
    "BreakerEvent",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
