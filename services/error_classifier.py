# ============================================================================
# ERROR CLASSIFIER
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Service - Failure taxonomy and recovery recommendations
# PURPOSE: Map a raw failure to kind, recoverability, strategy and delay
# CREATED: 18 OCT 2026
# ============================================================================
"""
Error Classifier

classify() is a pure function: the same error text and type always give
the same ClassifiedError. It never looks at job state; the JobManager
applies bounds such as "retry a batch at most once".

Matching order (first match wins):
    1. resource_launch_failure
    2. resource_timeout
    3. resource_session_terminated
    4. downstream_failure
    5. resource_exhaustion
    6. generic

Typed exceptions (CircuitOpenError, BatchTimeoutError, asyncio.TimeoutError,
ResourceExhaustedError) are mapped before any text matching.

Usage:
    classified = classify(exc, ErrorContext(operation="batch", job_id=job_id))
    if classified.recoverable:
        await asyncio.sleep(retry_delay_ms(classified, recovery_number) / 1000)
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

from core.contracts import ErrorKind, RetryStrategy

# Cap applied to progressive backoff delays
DEFAULT_MAX_BACKOFF_MS = 30000


@dataclass(frozen=True)
class ErrorContext:
    """Where the failure happened (for logging; does not change the result)."""
    operation: str = "unknown"
    job_id: Optional[str] = None
    batch_index: Optional[int] = None
    attempt: int = 1


@dataclass(frozen=True)
class ClassifiedError:
    """Typed outcome of classify()."""
    kind: ErrorKind
    recoverable: bool
    retry_strategy: RetryStrategy
    retry_delay_ms: int
    message: str
    error_type: str = "Exception"
    termination_reason: Optional[str] = None
    context: ErrorContext = field(default_factory=ErrorContext)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "recoverable": self.recoverable,
            "retry_strategy": self.retry_strategy.value,
            "retry_delay_ms": self.retry_delay_ms,
            "message": self.message,
            "error_type": self.error_type,
            "termination_reason": self.termination_reason,
        }


# ============================================================================
# TAXONOMY
# ============================================================================

def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


_LAUNCH_PATTERNS = _compile(
    r"failed to launch",
    r"launch.*timeout",
    r"could not start (browser|session)",
    r"spawn.*enoent",
    r"(browser|executable).*not found",
)

_TIMEOUT_PATTERNS = _compile(
    r"timeout.*exceeded",
    r"navigation timeout",
    r"waiting for.*timed out",
    r"timed out",
)

_SESSION_TERMINATED_PATTERNS = _compile(
    r"target page, context or browser has been closed",
    r"page closed",
    r"session.*closed",
    r"browser.*disconnected",
    r"context.*destroyed",
    r"connection.*(terminated|closed)",
    r"websocket.*closed",
    r"browser.*crash",
    r"target.*detached",
    r"browser closed",
    r"session.*(expired|invalid|not found)",
)

_DOWNSTREAM_PATTERNS = _compile(
    r"navigation.*failed",
    r"net::err_",
    r"failed to load",
    r"cannot navigate",
)

_EXHAUSTION_PATTERNS = _compile(
    r"out of memory",
    r"memory.*exhausted",
    r"enomem",
    r"heap.*exceeded",
)

_NON_RECOVERABLE_PATTERNS = _compile(
    r"permission.*denied",
    r"unauthorized",
    r"forbidden",
    r"authentication.*failed",
    r"configuration.*error",
)

# Termination reason -> (patterns, strategy, delay ms, recoverable)
_TERMINATION_REASONS: List[Tuple[str, List[Pattern[str]], RetryStrategy, int, bool]] = [
    ("manual_close", _compile(r"manual(ly)? clos", r"closed by user"),
     RetryStrategy.NO_RETRY, 0, False),
    ("process_killed", _compile(r"sigkill", r"process.*killed", r"killed by signal"),
     RetryStrategy.NO_RETRY, 0, False),
    ("race_condition", _compile(r"target page, context or browser has been closed"),
     RetryStrategy.IMMEDIATE, 3000, True),
    ("network_disconnection", _compile(r"connection.*(terminated|closed)", r"websocket", r"disconnected"),
     RetryStrategy.PROGRESSIVE_BACKOFF, 5000, True),
    ("context_destroyed", _compile(r"context.*destroyed"),
     RetryStrategy.SESSION_RECREATION, 2000, True),
    ("browser_crash", _compile(r"crash", r"target.*detached", r"browser closed"),
     RetryStrategy.SESSION_RECREATION, 1000, True),
    ("session_invalid", _compile(r"session.*(expired|invalid|not found)"),
     RetryStrategy.SESSION_RECREATION, 2000, True),
]

_DEFAULT_TERMINATION = ("unknown", RetryStrategy.SESSION_RECREATION, 1500, True)

# Kind -> (recoverable, strategy, delay ms)
_KIND_DEFAULTS: Dict[ErrorKind, Tuple[bool, RetryStrategy, int]] = {
    ErrorKind.RESOURCE_LAUNCH_FAILURE: (True, RetryStrategy.PROGRESSIVE_BACKOFF, 5000),
    ErrorKind.RESOURCE_TIMEOUT: (True, RetryStrategy.PROGRESSIVE_BACKOFF, 3000),
    ErrorKind.DOWNSTREAM_FAILURE: (True, RetryStrategy.PROGRESSIVE_BACKOFF, 2000),
    ErrorKind.RESOURCE_EXHAUSTION: (True, RetryStrategy.PROGRESSIVE_BACKOFF, 15000),
    ErrorKind.CIRCUIT_OPEN: (False, RetryStrategy.NO_RETRY, 0),
    ErrorKind.GENERIC: (True, RetryStrategy.IMMEDIATE, 1500),
}

_ORDERED_KINDS: List[Tuple[ErrorKind, List[Pattern[str]]]] = [
    (ErrorKind.RESOURCE_LAUNCH_FAILURE, _LAUNCH_PATTERNS),
    (ErrorKind.RESOURCE_TIMEOUT, _TIMEOUT_PATTERNS),
    (ErrorKind.RESOURCE_SESSION_TERMINATED, _SESSION_TERMINATED_PATTERNS),
    (ErrorKind.DOWNSTREAM_FAILURE, _DOWNSTREAM_PATTERNS),
    (ErrorKind.RESOURCE_EXHAUSTION, _EXHAUSTION_PATTERNS),
]


def _matches(patterns: List[Pattern[str]], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def _describe(error: Any) -> Tuple[str, str]:
    """Return (message, error_type) for an exception or a raw string."""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        return message, type(error).__name__
    return str(error), "str"


def _typed_kind(error: Any) -> Optional[ErrorKind]:
    # Imported here to keep the classifier free of import cycles
    from infrastructure.circuit_breaker import CircuitOpenError
    from worker.contracts import ResourceExhaustedError

    if isinstance(error, CircuitOpenError):
        return ErrorKind.CIRCUIT_OPEN
    if isinstance(error, ResourceExhaustedError):
        return ErrorKind.RESOURCE_EXHAUSTION
    if isinstance(error, asyncio.TimeoutError):
        # BatchTimeoutError and acquisition timeouts
        return ErrorKind.RESOURCE_TIMEOUT
    return None


def _termination(message: str) -> Tuple[str, RetryStrategy, int, bool]:
    for reason, patterns, strategy, delay, recoverable in _TERMINATION_REASONS:
        if _matches(patterns, message):
            return reason, strategy, delay, recoverable
    return _DEFAULT_TERMINATION


# ============================================================================
# PUBLIC API
# ============================================================================

def classify(error: Any, context: Optional[ErrorContext] = None) -> ClassifiedError:
    """
    Classify a raw failure.

    Args:
        error: Exception (or raw error text)
        context: Where it happened; carried through for logging

    Returns:
        ClassifiedError with kind, recoverability, strategy and delay
    """
    context = context or ErrorContext()
    message, error_type = _describe(error)

    kind = _typed_kind(error)
    if kind is None:
        kind = ErrorKind.GENERIC
        for candidate, patterns in _ORDERED_KINDS:
            if _matches(patterns, message):
                kind = candidate
                break

    if kind == ErrorKind.RESOURCE_SESSION_TERMINATED:
        reason, strategy, delay, recoverable = _termination(message)
        return ClassifiedError(
            kind=kind,
            recoverable=recoverable,
            retry_strategy=strategy,
            retry_delay_ms=delay,
            message=message,
            error_type=error_type,
            termination_reason=reason,
            context=context,
        )

    recoverable, strategy, delay = _KIND_DEFAULTS[kind]

    if kind == ErrorKind.CIRCUIT_OPEN:
        retry_in = getattr(error, "retry_in_seconds", 0.0) or 0.0
        delay = int(retry_in * 1000)
    elif kind == ErrorKind.GENERIC and _matches(_NON_RECOVERABLE_PATTERNS, message):
        recoverable, strategy = False, RetryStrategy.NO_RETRY

    return ClassifiedError(
        kind=kind,
        recoverable=recoverable,
        retry_strategy=strategy,
        retry_delay_ms=delay,
        message=message,
        error_type=error_type,
        context=context,
    )


def retry_delay_ms(
    classified: ClassifiedError,
    recovery_number: int = 1,
    cap_ms: int = DEFAULT_MAX_BACKOFF_MS,
) -> int:
    """
    Delay before the given recovery attempt (1-based).

    progressive_backoff doubles per recovery within the same job and is
    capped; other strategies use the base delay; no_retry is 0.
    """
    if classified.retry_strategy == RetryStrategy.NO_RETRY:
        return 0
    base = classified.retry_delay_ms
    if classified.retry_strategy == RetryStrategy.PROGRESSIVE_BACKOFF:
        exponent = max(0, recovery_number - 1)
        return min(base * (2 ** exponent), cap_ms)
    return min(base, cap_ms)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ErrorContext",
    "ClassifiedError",
    "classify",
    "retry_delay_ms",
    "DEFAULT_MAX_BACKOFF_MS",
]
