# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Tests - Shared fakes
# PURPOSE: Fake clock, sleep, providers and memory probes used across tests
# CREATED: 18 OCT 2026
# ============================================================================
"""
Shared test fixtures.

The engine takes its clock, sleep and memory probe as constructor
arguments, so tests never wait on real timers or read real memory.
"""

from typing import Any, List

import pytest

from infrastructure.resource_monitor import MemorySample
from worker.contracts import SessionProvider


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedMemoryProbe:
    """Returns queued RSS readings; repeats the last one when exhausted."""

    def __init__(self, *readings: float):
        self.readings = list(readings) or [100.0]

    def set(self, rss_mb: float) -> None:
        self.readings = [rss_mb]

    def __call__(self) -> MemorySample:
        if len(self.readings) > 1:
            return MemorySample(rss_mb=self.readings.pop(0))
        return MemorySample(rss_mb=self.readings[0])


class FlakyProvider(SessionProvider):
    """Fails the first ``failures`` launches, then hands out numbered sessions."""

    def __init__(self, failures: int = 0, error: str = "Failed to launch browser"):
        self.failures = failures
        self.error = error
        self.created = 0
        self.closed: List[Any] = []
        self.close_error: Exception = None
        self.healthy = True

    async def create_session(self) -> Any:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError(self.error)
        self.created += 1
        return {"session": self.created}

    async def close_session(self, resource: Any) -> None:
        self.closed.append(resource)
        if self.close_error is not None:
            raise self.close_error

    async def check_session(self, resource: Any) -> bool:
        return self.healthy


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def memory_probe():
    return ScriptedMemoryProbe(100.0)
