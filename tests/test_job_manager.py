# ============================================================================
# JOB MANAGER TESTS
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# STATUS: Tests - Job lifecycle, recovery and parking
# PURPOSE: Verify the worker loop end to end against scripted collaborators
# CREATED: 18 OCT 2026
# ============================================================================
"""
Job Manager Tests

Covers:
1. Submission validation and option resolution
2. Happy path: ordered batches, inter-batch pacing, one session per job
3. Crash recovery: one retry on a fresh session, committed records not replayed
4. Retry bound: a batch is retried at most once
5. Non-recoverable failures and max_batch_retries=0
6. Cooperative cancellation (pending, processing, parked)
7. Circuit open: PAUSED, then re-queued when the breaker recovers
8. Recovery blocked: RECOVERY_REQUIRED, manual resume without duplicates
9. Emergency pause from memory exhaustion, and resume
10. Shutdown parks the processing job, keeping in-flight commits and
    handing back an unfinished breaker probe slot
11. Status publication is best effort; progress is monotonic
12. Views, cleanup and duration estimates

Run with:
    pytest tests/test_job_manager.py -v
"""

import asyncio
import pytest
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.config import CircuitBreakerDefaults, JobDefaults, MonitorDefaults, SessionDefaults
from core.contracts import CircuitState, ErrorKind, JobStatus, ThresholdKind
from core.errors import JobValidationError
from core.models import EventType, RecordOutcome, StatusEvent
from infrastructure.circuit_breaker import CircuitBreaker
from infrastructure.resource_monitor import MonitorEvent, ResourceMonitor
from infrastructure.session_manager import SessionManager
from orchestrator.job_manager import (
    PARK_CIRCUIT_OPEN,
    PARK_MEMORY_EXHAUSTION,
    PARK_RECOVERY_BLOCKED,
    JobManager,
    format_duration,
)
from services.status_sink import StatusSink
from worker.contracts import RecordProcessor, SessionTerminatedError
from worker.echo import EchoRecordProcessor, EchoSessionProvider

from conftest import FlakyProvider, ScriptedMemoryProbe


HANG = "hang"


# ============================================================================
# FAKES
# ============================================================================

class ScriptedProcessor(RecordProcessor):
    """
    Submits records one at a time, committing each to the checkpoint.

    ``plan`` maps batch index -> list of (after, error) steps consumed one
    per call: the call raises ``error`` once ``after`` records are
    committed. ``error`` may be HANG to block until the batch times out.
    """

    def __init__(self, plan: Optional[Dict[int, List[Tuple[int, Any]]]] = None):
        self.plan = {k: list(v) for k, v in (plan or {}).items()}
        self.calls: List[Tuple[int, List[Any]]] = []
        self.submitted: List[Any] = []

    async def process_batch(self, session, records, job_id, checkpoint, timeout_seconds):
        self.calls.append((checkpoint.batch_index, list(records)))
        steps = self.plan.get(checkpoint.batch_index)
        step = steps.pop(0) if steps else None

        outcomes = []
        for i, record in enumerate(records):
            if step is not None and i == step[0]:
                await self._fail(step[1])
            outcome = RecordOutcome.submitted(record)
            checkpoint.commit(i, outcome)
            self.submitted.append(record)
            outcomes.append(outcome)
        if step is not None and step[0] >= len(records):
            await self._fail(step[1])
        return outcomes

    @staticmethod
    async def _fail(error):
        if error == HANG:
            await asyncio.sleep(3600)
        raise error


class GatedProcessor(EchoRecordProcessor):
    """Blocks forever on one batch so a test can act mid-job."""

    def __init__(self, gate_batch: int):
        super().__init__()
        self.gate_batch = gate_batch
        self.entered: Optional[asyncio.Event] = None

    async def process_batch(self, session, records, job_id, checkpoint, timeout_seconds):
        if checkpoint.batch_index == self.gate_batch:
            self.entered.set()
            await asyncio.sleep(3600)
        return await super().process_batch(session, records, job_id, checkpoint, timeout_seconds)


class RecordingSink(StatusSink):
    """Keeps every event; optionally runs a hook per event."""

    def __init__(self):
        self.events: List[StatusEvent] = []
        self.hook: Optional[Callable[[StatusEvent], Awaitable[None]]] = None

    async def publish(self, event: StatusEvent) -> bool:
        self.events.append(event)
        if self.hook is not None:
            await self.hook(event)
        return True

    def types(self, job_id: str = None) -> List[EventType]:
        return [e.event_type for e in self.events if job_id is None or e.job_id == job_id]


class FailingSink(StatusSink):
    async def publish(self, event: StatusEvent) -> bool:
        raise RuntimeError("sink down")


def crash(after: int, message: str = "Browser crashed") -> Tuple[int, Exception]:
    return after, SessionTerminatedError(message)


def make_records(count: int) -> List[str]:
    return [f"r{i}" for i in range(count)]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def make_engine(clock, fake_sleep):
    """Factory: JobManager wired to a real breaker, monitor and session manager."""
    def _make(processor=None, provider=None, sink=None, max_launch_attempts=1, **job_overrides):
        provider = provider or EchoSessionProvider()
        processor = processor or ScriptedProcessor()
        sink = sink if sink is not None else RecordingSink()
        breaker = CircuitBreaker(
            "session-acquisition",
            CircuitBreakerDefaults(failure_threshold=3, reset_timeout_seconds=60.0),
            clock=clock,
        )
        probe = ScriptedMemoryProbe(100.0)
        monitor = ResourceMonitor(
            MonitorDefaults(warning_threshold_mb=800, max_threshold_mb=1000),
            memory_probe=probe,
            clock=clock,
        )
        sessions = SessionManager(
            provider,
            breaker,
            monitor=monitor,
            config=SessionDefaults(max_launch_attempts=max_launch_attempts, retry_delay_seconds=0.0),
            sleep=fake_sleep,
        )
        job_params = dict(batch_size=2, inter_batch_delay_seconds=0.0)
        job_params.update(job_overrides)
        jobs = JobManager(
            sessions,
            processor,
            config=JobDefaults(**job_params),
            status_sink=sink,
            sleep=fake_sleep,
        )
        return SimpleNamespace(
            jobs=jobs,
            sessions=sessions,
            breaker=breaker,
            monitor=monitor,
            probe=probe,
            provider=provider,
            processor=processor,
            sink=sink,
            clock=clock,
            sleep=fake_sleep,
        )
    return _make


async def submit_and_drain(jobs: JobManager, records, options=None) -> str:
    job_id = await jobs.submit(records, options)
    assert await jobs.wait_until_idle(timeout=5)
    return job_id


# ============================================================================
# SUBMISSION
# ============================================================================

class TestSubmit:
    """Validation and option resolution."""

    def test_empty_records_rejected(self, make_engine):
        eng = make_engine()
        with pytest.raises(JobValidationError):
            asyncio.run(eng.jobs.submit([]))

    def test_non_list_rejected(self, make_engine):
        eng = make_engine()
        with pytest.raises(JobValidationError):
            asyncio.run(eng.jobs.submit("abc"))

    def test_bad_batch_size_rejected(self, make_engine):
        eng = make_engine()
        with pytest.raises(JobValidationError):
            asyncio.run(eng.jobs.submit(["a"], {"batch_size": 0}))

    def test_retries_clamped_to_one(self, make_engine):
        eng = make_engine()
        job_id = asyncio.run(eng.jobs.submit(["a"], {"max_batch_retries": 5}))
        assert eng.jobs.status(job_id).options.max_batch_retries == 1

    def test_defaults_from_config(self, make_engine):
        eng = make_engine(batch_size=7, batch_timeout_seconds=42.0)
        job_id = asyncio.run(eng.jobs.submit(["a"]))
        options = eng.jobs.status(job_id).options
        assert options.batch_size == 7
        assert options.batch_timeout_seconds == 42.0

    def test_submit_emits_event_and_metadata(self, make_engine):
        eng = make_engine()
        job_id = asyncio.run(submit_and_drain(eng.jobs, ["a"], None))
        assert eng.sink.types(job_id)[0] == EventType.JOB_SUBMITTED
        assert eng.jobs.stats["jobs_submitted"] == 1


# ============================================================================
# HAPPY PATH
# ============================================================================

class TestHappyPath:
    """Jobs that run without failures."""

    def test_completes_in_order(self, make_engine):
        eng = make_engine()
        records = make_records(5)

        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.progress.completed == 5
        assert view.progress.failed == 0
        assert view.progress.percentage == 100
        assert [o.record_ref for o in eng.jobs.results(job_id)] == records
        assert [idx for idx, _ in eng.processor.calls] == [0, 1, 2]
        assert view.stats.session_acquisitions == 1
        assert view.completed_at is not None

    def test_event_sequence(self, make_engine):
        eng = make_engine()
        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(4)))
        assert eng.sink.types(job_id) == [
            EventType.JOB_SUBMITTED,
            EventType.JOB_STARTED,
            EventType.BATCH_COMPLETED,
            EventType.BATCH_COMPLETED,
            EventType.JOB_COMPLETED,
        ]

    def test_session_released_once(self, make_engine):
        eng = make_engine()
        asyncio.run(submit_and_drain(eng.jobs, make_records(4)))
        assert eng.provider.open_sessions == {}
        assert eng.sessions.stats["releases"] == 1
        assert eng.sessions.active_count == 0

    def test_inter_batch_delay_not_after_last(self, make_engine):
        eng = make_engine(inter_batch_delay_seconds=0.5)
        asyncio.run(submit_and_drain(eng.jobs, make_records(5)))
        assert eng.sleep.calls == [0.5, 0.5]

    def test_record_failures_counted(self, make_engine):
        eng = make_engine(processor=EchoRecordProcessor())
        records = ["a", {"fail": True}, {"skip": True}, "d"]

        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.progress.completed == 2
        assert view.progress.failed == 2
        assert [e.kind for e in view.recent_errors] == [ErrorKind.RECORD_FAILURE] * 2

    def test_jobs_run_fifo(self, make_engine):
        eng = make_engine()

        async def run():
            first = await eng.jobs.submit(["a1", "a2", "a3"])
            second = await eng.jobs.submit(["b1"])
            await eng.jobs.wait_until_idle(timeout=5)
            return first, second

        first, second = asyncio.run(run())
        submitted = eng.processor.submitted
        assert submitted == ["a1", "a2", "a3", "b1"]
        assert eng.jobs.status(first).status == JobStatus.COMPLETED
        assert eng.jobs.status(second).status == JobStatus.COMPLETED

    def test_progress_monotonic(self, make_engine):
        eng = make_engine(processor=EchoRecordProcessor())
        records = ["a", {"fail": True}, "c", "d", {"fail": True}, "f", "g"]
        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        processed = [e.processed for e in eng.sink.events if e.job_id == job_id]
        assert processed == sorted(processed)
        assert processed[-1] == len(records)


# ============================================================================
# CRASH RECOVERY
# ============================================================================

class TestCrashRecovery:
    """Recoverable batch failures."""

    def test_recovers_on_fresh_session(self, make_engine):
        processor = ScriptedProcessor({1: [crash(2)]})
        eng = make_engine(processor=processor, batch_size=5)
        records = make_records(10)

        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.progress.completed == 10
        assert view.stats.crash_recoveries == 1
        assert view.stats.batch_retries == 1
        assert view.stats.session_acquisitions == 2
        assert eng.provider.open_sessions == {}
        # Committed records are not submitted a second time
        assert processor.submitted == records
        assert processor.calls[-1] == (1, ["r7", "r8", "r9"])
        assert [o.record_ref for o in eng.jobs.results(job_id)] == records

    def test_recovery_events(self, make_engine):
        eng = make_engine(processor=ScriptedProcessor({1: [crash(2)]}), batch_size=5)
        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(10)))

        assert eng.sink.types(job_id) == [
            EventType.JOB_SUBMITTED,
            EventType.JOB_STARTED,
            EventType.BATCH_COMPLETED,
            EventType.BATCH_FAILED,
            EventType.BATCH_RECOVERED,
            EventType.BATCH_COMPLETED,
            EventType.JOB_COMPLETED,
        ]
        recovered = [e for e in eng.sink.events if e.event_type == EventType.BATCH_COMPLETED][-1]
        assert recovered.batch.recovered is True
        assert eng.jobs.stats["batch_recoveries"] == 1

    def test_backoff_from_classification(self, make_engine):
        eng = make_engine(processor=ScriptedProcessor({0: [crash(1)]}))
        asyncio.run(submit_and_drain(eng.jobs, make_records(2)))
        # browser_crash -> session_recreation at 1000 ms
        assert eng.sleep.calls == [1.0]

    def test_order_preserved_under_retry(self, make_engine):
        eng = make_engine(processor=ScriptedProcessor({0: [crash(1)]}))
        records = ["A", "B", "C", "D"]

        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        assert [o.record_ref for o in eng.jobs.results(job_id)] == records
        assert eng.processor.submitted == records

    def test_batch_retried_at_most_once(self, make_engine):
        processor = ScriptedProcessor({0: [crash(1), crash(0)]})
        eng = make_engine(processor=processor)

        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(4)))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.FAILED
        assert [idx for idx, _ in processor.calls] == [0, 0]
        assert view.error_count == 2
        # The record committed before the first crash is kept
        assert [o.record_ref for o in eng.jobs.results(job_id)] == ["r0"]
        assert view.progress.completed == 1
        assert eng.provider.open_sessions == {}

    def test_timeout_recovered(self, make_engine):
        processor = ScriptedProcessor({0: [(0, HANG)]})
        eng = make_engine(processor=processor)

        job_id = asyncio.run(
            submit_and_drain(eng.jobs, make_records(2), {"batch_timeout_seconds": 0.05})
        )

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.recent_errors[0].kind == ErrorKind.RESOURCE_TIMEOUT
        assert view.stats.crash_recoveries == 1
        assert eng.sleep.calls == [3.0]

    def test_non_recoverable_fails_without_retry(self, make_engine):
        processor = ScriptedProcessor({1: [(0, RuntimeError("Permission denied"))]})
        eng = make_engine(processor=processor)

        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(4)))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.FAILED
        assert len(processor.calls) == 2
        assert view.stats.session_acquisitions == 1
        # Earlier batches keep their results
        assert view.results_count == 2

    def test_zero_retries_option(self, make_engine):
        eng = make_engine(processor=ScriptedProcessor({0: [crash(0)]}))
        job_id = asyncio.run(
            submit_and_drain(eng.jobs, make_records(2), {"max_batch_retries": 0})
        )
        assert eng.jobs.status(job_id).status == JobStatus.FAILED
        assert len(eng.processor.calls) == 1

    def test_launch_failure_fails_job(self, make_engine):
        eng = make_engine(provider=FlakyProvider(failures=100))
        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(2)))

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.FAILED
        assert view.recent_errors[-1].kind == ErrorKind.RESOURCE_LAUNCH_FAILURE
        assert eng.processor.calls == []


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancel:
    """cancel() in every state."""

    def test_cancel_pending(self, make_engine):
        eng = make_engine()

        async def run():
            job_id = await eng.jobs.submit(make_records(4))
            result = await eng.jobs.cancel(job_id)
            await eng.jobs.wait_until_idle(timeout=5)
            return job_id, result

        job_id, result = asyncio.run(run())

        assert result.ok
        assert result.status == JobStatus.CANCELLED
        assert eng.jobs.status(job_id).status == JobStatus.CANCELLED
        assert eng.processor.calls == []

    def test_cancel_processing_after_second_batch(self, make_engine):
        eng = make_engine()
        records = make_records(10)
        results = []

        async def hook(event):
            if event.event_type == EventType.BATCH_COMPLETED and event.batch.index == 1:
                results.append(await eng.jobs.cancel(event.job_id))

        eng.sink.hook = hook
        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        assert results[0].ok
        assert results[0].status == JobStatus.PROCESSING
        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.CANCELLED
        assert [o.record_ref for o in eng.jobs.results(job_id)] == records[:4]
        assert view.progress.completed == 4
        assert eng.provider.open_sessions == {}

    def test_cancel_unknown(self, make_engine):
        eng = make_engine()
        result = asyncio.run(eng.jobs.cancel("missing"))
        assert not result.ok
        assert result.not_found

    def test_cancel_terminal(self, make_engine):
        eng = make_engine()

        async def run():
            job_id = await submit_and_drain(eng.jobs, ["a"])
            return await eng.jobs.cancel(job_id)

        result = asyncio.run(run())
        assert not result.ok
        assert result.status == JobStatus.COMPLETED

    def test_cancel_parked_keeps_committed(self, make_engine):
        eng = make_engine(processor=ScriptedProcessor({0: [crash(1)]}))

        async def hook(event):
            if event.event_type == EventType.BATCH_FAILED:
                eng.breaker.force_open("test")

        eng.sink.hook = hook

        async def run():
            job_id = await submit_and_drain(eng.jobs, make_records(4))
            return job_id, await eng.jobs.cancel(job_id)

        job_id, result = asyncio.run(run())
        assert result.ok
        assert eng.jobs.status(job_id).status == JobStatus.CANCELLED
        assert [o.record_ref for o in eng.jobs.results(job_id)] == ["r0"]


# ============================================================================
# CIRCUIT BREAKER INTERPLAY
# ============================================================================

class TestCircuitOpen:
    """Parking on an open circuit."""

    def test_paused_then_requeued_on_recovery(self, make_engine):
        eng = make_engine()
        eng.breaker.add_listener(eng.jobs.on_breaker_event)
        eng.breaker.force_open("test")

        async def run():
            job_id = await submit_and_drain(eng.jobs, make_records(4))
            paused = eng.jobs.status(job_id)
            eng.clock.advance(60.0)
            eng.breaker.check_recovery()
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id, paused

        job_id, paused = asyncio.run(run())

        assert paused.status == JobStatus.PAUSED
        assert paused.park_reason == PARK_CIRCUIT_OPEN
        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.park_reason is None
        assert eng.breaker.state == CircuitState.CLOSED
        assert EventType.JOB_PAUSED in eng.sink.types(job_id)

    def test_events_from_other_breakers_ignored(self, make_engine):
        eng = make_engine()
        eng.breaker.force_open("test")
        other = CircuitBreaker("other", clock=eng.clock)
        other.add_listener(eng.jobs.on_breaker_event)

        async def run():
            job_id = await submit_and_drain(eng.jobs, ["a"])
            other.force_open("x")
            other.reset()
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id

        job_id = asyncio.run(run())
        assert eng.jobs.status(job_id).status == JobStatus.PAUSED

    def test_recovery_blocked_then_manual_resume(self, make_engine):
        processor = ScriptedProcessor({0: [crash(1)]})
        eng = make_engine(processor=processor)
        eng.breaker.add_listener(eng.jobs.on_breaker_event)
        records = make_records(4)

        async def hook(event):
            if event.event_type == EventType.BATCH_FAILED:
                eng.breaker.force_open("test")

        eng.sink.hook = hook

        async def run():
            job_id = await submit_and_drain(eng.jobs, records)
            blocked = eng.jobs.status(job_id)
            eng.breaker.reset()
            # Not re-queued automatically
            assert eng.jobs.status(job_id).status == JobStatus.RECOVERY_REQUIRED
            result = await eng.jobs.resume(job_id)
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id, blocked, result

        job_id, blocked, result = asyncio.run(run())

        assert blocked.status == JobStatus.RECOVERY_REQUIRED
        assert blocked.park_reason == PARK_RECOVERY_BLOCKED
        assert result.ok
        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        # r0 was committed before the crash and is never resubmitted
        assert processor.submitted == records
        assert processor.calls[1] == (0, ["r1"])
        assert [o.record_ref for o in eng.jobs.results(job_id)] == records

    def test_resume_rejects_non_parked(self, make_engine):
        eng = make_engine()

        async def run():
            job_id = await submit_and_drain(eng.jobs, ["a"])
            return await eng.jobs.resume(job_id)

        result = asyncio.run(run())
        assert not result.ok
        assert result.status == JobStatus.COMPLETED

    def test_resume_unknown(self, make_engine):
        eng = make_engine()
        assert asyncio.run(eng.jobs.resume("missing")).not_found


# ============================================================================
# EMERGENCY PAUSE & SHUTDOWN
# ============================================================================

class TestEmergencyAndShutdown:
    """Memory exhaustion and stop()."""

    def test_exhaustion_pauses_between_batches(self, make_engine):
        eng = make_engine()

        async def hook(event):
            if event.event_type == EventType.BATCH_COMPLETED and event.batch.index == 0:
                eng.jobs.on_monitor_event(MonitorEvent(
                    kind=ThresholdKind.EXHAUSTION, rss_mb=1500, threshold_mb=1000,
                ))

        eng.sink.hook = hook

        async def run():
            job_id = await submit_and_drain(eng.jobs, make_records(6))
            paused = eng.jobs.status(job_id)
            result = await eng.jobs.resume(job_id)
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id, paused, result

        job_id, paused, result = asyncio.run(run())

        assert paused.status == JobStatus.EMERGENCY_PAUSED
        assert paused.park_reason == PARK_MEMORY_EXHAUSTION
        assert paused.results_count == 2
        assert EventType.JOB_EMERGENCY_PAUSED in eng.sink.types(job_id)
        assert result.ok
        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.COMPLETED
        assert view.stats.session_acquisitions == 2
        assert [o.record_ref for o in eng.jobs.results(job_id)] == make_records(6)

    def test_exhausted_at_acquire(self, make_engine):
        eng = make_engine()

        async def run():
            eng.probe.set(1500.0)
            await eng.monitor.sample()
            return await submit_and_drain(eng.jobs, make_records(2))

        job_id = asyncio.run(run())
        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.EMERGENCY_PAUSED
        assert eng.processor.calls == []

    def test_emergency_pause_without_active_job(self, make_engine):
        eng = make_engine()
        assert eng.jobs.emergency_pause("memory") is None

    def test_emergency_paused_job_cancellable(self, make_engine):
        eng = make_engine()

        async def run():
            eng.probe.set(1500.0)
            await eng.monitor.sample()
            job_id = await submit_and_drain(eng.jobs, make_records(2))
            return job_id, await eng.jobs.cancel(job_id)

        job_id, result = asyncio.run(run())
        assert result.ok
        assert eng.jobs.status(job_id).status == JobStatus.CANCELLED

    def test_stop_parks_processing_job(self, make_engine):
        processor = GatedProcessor(gate_batch=1)
        eng = make_engine(processor=processor)

        async def run():
            processor.entered = asyncio.Event()
            await eng.jobs.start()
            job_id = await eng.jobs.submit(make_records(4))
            await asyncio.wait_for(processor.entered.wait(), timeout=5)
            assert eng.jobs.is_processing
            await eng.jobs.stop()
            return job_id

        job_id = asyncio.run(run())

        view = eng.jobs.status(job_id)
        assert view.status == JobStatus.PAUSED
        assert view.park_reason == "shutdown"
        assert view.results_count == 2
        assert not eng.jobs.is_processing
        assert eng.provider.open_sessions == {}

    def test_stop_mid_batch_keeps_commits(self, make_engine):
        processor = ScriptedProcessor({0: [(1, HANG)]})
        eng = make_engine(processor=processor)
        records = make_records(4)

        async def run():
            await eng.jobs.start()
            job_id = await eng.jobs.submit(records)
            while not processor.submitted:
                await asyncio.sleep(0.01)
            await eng.jobs.stop()
            stopped = eng.jobs.status(job_id)

            await eng.jobs.start()
            assert (await eng.jobs.resume(job_id)).ok
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id, stopped

        job_id, stopped = asyncio.run(run())

        assert stopped.status == JobStatus.PAUSED
        assert processor.submitted == records
        assert processor.calls[1] == (0, ["r1"])
        assert eng.jobs.status(job_id).status == JobStatus.COMPLETED
        assert [o.record_ref for o in eng.jobs.results(job_id)] == records

    def test_stop_during_recovery_launch_frees_breaker(self, make_engine, clock):
        class HangingProvider(EchoSessionProvider):
            def __init__(self):
                super().__init__()
                self.hang = True
                self.entered: Optional[asyncio.Event] = None

            async def create_session(self):
                if self.hang:
                    self.entered.set()
                    await asyncio.sleep(3600)
                return await super().create_session()

        provider = HangingProvider()
        eng = make_engine(processor=EchoRecordProcessor(), provider=provider)
        eng.breaker.force_open("test")
        clock.advance(60.0)

        async def run():
            provider.entered = asyncio.Event()
            await eng.jobs.start()
            job_id = await eng.jobs.submit(make_records(2))
            await asyncio.wait_for(provider.entered.wait(), timeout=5)
            await eng.jobs.stop()
            assert eng.breaker.state == CircuitState.HALF_OPEN
            assert eng.breaker.check_recovery() is True

            provider.hang = False
            await eng.jobs.start()
            assert (await eng.jobs.resume(job_id)).ok
            assert await eng.jobs.wait_until_idle(timeout=5)
            return job_id

        job_id = asyncio.run(run())

        assert eng.jobs.status(job_id).status == JobStatus.COMPLETED
        assert eng.breaker.state == CircuitState.CLOSED


# ============================================================================
# STATUS PUBLICATION
# ============================================================================

class TestPublication:
    """Best-effort status events."""

    def test_sink_failure_does_not_affect_job(self, make_engine):
        eng = make_engine(sink=FailingSink())
        job_id = asyncio.run(submit_and_drain(eng.jobs, make_records(4)))

        assert eng.jobs.status(job_id).status == JobStatus.COMPLETED
        # submitted, started, 2 batches, completed
        assert eng.jobs.stats["events_dropped"] == 5

    def test_final_event_carries_errors(self, make_engine):
        eng = make_engine(processor=EchoRecordProcessor())
        job_id = asyncio.run(submit_and_drain(eng.jobs, ["a", {"fail": True}]))

        final = eng.sink.events[-1]
        assert final.event_type == EventType.JOB_COMPLETED
        assert final.job_id == job_id
        assert len(final.errors) == 1
        assert final.progress["failed"] == 1


# ============================================================================
# VIEWS & HOUSEKEEPING
# ============================================================================

class TestViews:
    """Status, listing, cleanup and estimates."""

    def test_status_unknown(self, make_engine):
        eng = make_engine()
        assert eng.jobs.status("missing") is None
        assert eng.jobs.results("missing") is None

    def test_list_jobs(self, make_engine):
        eng = make_engine()

        async def run():
            await submit_and_drain(eng.jobs, ["a"])
            await submit_and_drain(eng.jobs, ["b", "c"])

        asyncio.run(run())
        listing = eng.jobs.list_jobs()
        assert listing.total == 2
        assert listing.pending_in_queue == 0
        assert listing.is_processing is False
        assert listing.active_job_id is None
        assert all(s.status == JobStatus.COMPLETED for s in listing.jobs)

    def test_view_truncates_errors_and_results(self, make_engine):
        eng = make_engine(processor=EchoRecordProcessor(), batch_size=10)
        records = [{"fail": True, "n": i} for i in range(8)]
        job_id = asyncio.run(submit_and_drain(eng.jobs, records))

        view = eng.jobs.status(job_id)
        assert view.error_count == 8
        assert len(view.recent_errors) == 5
        assert view.results_count == 8
        assert len(view.sample_results) == 3

    def test_cleanup_old_jobs(self, make_engine):
        eng = make_engine()
        job_id = asyncio.run(submit_and_drain(eng.jobs, ["a"]))

        assert eng.jobs.cleanup_old_jobs() == 0
        assert eng.jobs.cleanup_old_jobs(max_age_seconds=-1) == 1
        assert eng.jobs.status(job_id) is None

    def test_estimate_duration(self, make_engine):
        eng = make_engine(seconds_per_record=24.0, inter_batch_delay_seconds=2.0, batch_size=5)
        assert eng.jobs.estimate_duration(10) == 10 * 24.0 + 1 * 2.0
        assert eng.jobs.estimate_duration(10, batch_size=2) == 10 * 24.0 + 4 * 2.0
        assert eng.jobs.estimate_duration(0) == 0.0

    @pytest.mark.parametrize("seconds,expected", [
        (5, "5s"),
        (125, "2m 5s"),
        (3725, "1h 2m 5s"),
        (0, "0s"),
    ])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected
        assert JobManager.format_duration(seconds) == expected
