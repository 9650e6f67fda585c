from __future__ import annotations

import asyncio

import httpx
import pytest
from structlog.testing import capture_logs

from storybook_gate.domain.errors import DomainError, ProviderUnavailable
from storybook_gate.domain.watcher import AttemptBudget, JobStatus, JobWatcher, is_transient
from storybook_gate.observability.logging import configure_logging, get_logger


class ScriptedStatus:
    """Status function replaying a fixed script; the last entry repeats."""

    def __init__(self, *script) -> None:
        self.script = list(script)
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, job_id: str) -> JobStatus:
        self.calls.append(job_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            idx = min(len(self.calls), len(self.script)) - 1
            step = self.script[idx]
            if isinstance(step, BaseException):
                raise step
            return step
        finally:
            self.in_flight -= 1


def _watcher(clock, **budget) -> JobWatcher:
    return JobWatcher(AttemptBudget(**budget), logger=get_logger().bind(component="test-watcher"), clock=clock)


@pytest.mark.asyncio
async def test_succeeds_on_first_poll(clock):
    status = ScriptedStatus(JobStatus.succeeded("https://cdn/x.png"))
    watcher = _watcher(clock, max_attempts=5, poll_interval_s=1.0)

    assert await watcher.watch("job-1", status) == "https://cdn/x.png"
    assert status.calls == ["job-1"]
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_pending_pending_succeeded(clock):
    status = ScriptedStatus(JobStatus.pending(), JobStatus.pending(), JobStatus.succeeded("X"))
    watcher = _watcher(clock, max_attempts=3, poll_interval_s=1.0)

    assert await watcher.watch("job-1", status) == "X"
    assert len(status.calls) == 3
    assert clock.sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_always_pending_times_out_after_exactly_max_attempts(clock):
    status = ScriptedStatus(JobStatus.pending())
    watcher = _watcher(clock, max_attempts=7, poll_interval_s=1.0)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "WATCH_TIMED_OUT"
    assert ei.value.details["attempts"] == 7
    assert len(status.calls) == 7
    # No sleep after the final poll.
    assert clock.sleeps == [1.0] * 6


@pytest.mark.asyncio
async def test_provider_failure_stops_polling_immediately(clock):
    status = ScriptedStatus(JobStatus.pending(), JobStatus.pending(), JobStatus.failed("x"), JobStatus.succeeded("late"))
    watcher = _watcher(clock, max_attempts=10, poll_interval_s=1.0)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "PROVIDER_FAILED"
    assert ei.value.message == "x"
    assert len(status.calls) == 3


@pytest.mark.asyncio
async def test_transient_error_is_retried_within_the_same_slot(clock):
    status = ScriptedStatus(
        JobStatus.pending(),
        ProviderUnavailable("blip"),
        httpx.ConnectError("refused"),
        JobStatus.succeeded("X"),
    )
    watcher = _watcher(clock, max_attempts=2, poll_interval_s=1.0, transport_retries=2, transport_retry_delay_s=0.25)

    # Two polls fit the budget even though four status calls were made.
    assert await watcher.watch("job-1", status) == "X"
    assert len(status.calls) == 4
    assert clock.sleeps == [1.0, 0.25, 0.25]


@pytest.mark.asyncio
async def test_transport_errors_beyond_retry_budget_surface_provider_error(clock):
    cause = ProviderUnavailable("down")
    status = ScriptedStatus(cause)
    watcher = _watcher(clock, max_attempts=10, poll_interval_s=1.0, transport_retries=2, transport_retry_delay_s=0.1)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "PROVIDER_ERROR"
    assert ei.value.details["transport_failures"] == 3
    assert ei.value.__cause__ is cause
    assert len(status.calls) == 3


@pytest.mark.asyncio
async def test_strict_mode_surfaces_first_transport_error(clock):
    status = ScriptedStatus(ProviderUnavailable("down"), JobStatus.succeeded("X"))
    watcher = _watcher(clock, max_attempts=10, transport_retries=0)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "PROVIDER_ERROR"
    assert len(status.calls) == 1


@pytest.mark.asyncio
async def test_non_transient_exception_is_not_retried(clock):
    status = ScriptedStatus(KeyError("status"), JobStatus.succeeded("X"))
    watcher = _watcher(clock, max_attempts=10, transport_retries=5)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "PROVIDER_ERROR"
    assert ei.value.details["error_type"] == "KeyError"
    assert len(status.calls) == 1


@pytest.mark.asyncio
async def test_cancel_before_first_poll(clock):
    status = ScriptedStatus(JobStatus.succeeded("X"))
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(DomainError) as ei:
        await _watcher(clock, max_attempts=3).watch("job-1", status, cancel=cancel)

    assert ei.value.code == "CANCELLED"
    assert status.calls == []


@pytest.mark.asyncio
async def test_cancel_between_polls_stops_before_next_poll(clock):
    cancel = asyncio.Event()

    class CancelOnSecondPoll(ScriptedStatus):
        async def __call__(self, job_id: str) -> JobStatus:
            result = await super().__call__(job_id)
            if len(self.calls) == 2:
                cancel.set()
            return result

    status = CancelOnSecondPoll(JobStatus.pending())
    watcher = _watcher(clock, max_attempts=10, poll_interval_s=1.0)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status, cancel=cancel)

    assert ei.value.code == "CANCELLED"
    assert ei.value.details["attempts"] == 2
    assert len(status.calls) == 2


@pytest.mark.asyncio
async def test_cancel_interrupts_the_poll_interval():
    # Real clock: a one hour interval must not delay cancellation.
    watcher = JobWatcher(
        AttemptBudget(max_attempts=5, poll_interval_s=3600.0),
        logger=get_logger().bind(component="test-watcher"),
    )
    status = ScriptedStatus(JobStatus.pending())
    cancel = asyncio.Event()

    task = asyncio.create_task(watcher.watch("job-1", status, cancel=cancel))
    await asyncio.sleep(0.05)
    cancel.set()

    with pytest.raises(DomainError) as ei:
        await asyncio.wait_for(task, timeout=1.0)
    assert ei.value.code == "CANCELLED"
    assert len(status.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_watches_are_independent_and_sequential():
    watcher = JobWatcher(
        AttemptBudget(max_attempts=5, poll_interval_s=0.01),
        logger=get_logger().bind(component="test-watcher"),
    )
    a = ScriptedStatus(JobStatus.pending(), JobStatus.succeeded("A"))
    b = ScriptedStatus(JobStatus.pending(), JobStatus.pending(), JobStatus.failed("boom"))

    results = await asyncio.gather(watcher.watch("a", a), watcher.watch("b", b), return_exceptions=True)

    assert results[0] == "A"
    assert isinstance(results[1], DomainError)
    assert results[1].code == "PROVIDER_FAILED"
    assert a.max_in_flight == 1
    assert b.max_in_flight == 1


def test_is_transient_classification():
    request = httpx.Request("GET", "https://example.test")
    assert is_transient(ProviderUnavailable("x"))
    assert is_transient(httpx.ReadTimeout("slow", request=request))
    assert is_transient(httpx.HTTPStatusError("5xx", request=request, response=httpx.Response(503, request=request)))
    assert not is_transient(httpx.HTTPStatusError("4xx", request=request, response=httpx.Response(404, request=request)))
    assert not is_transient(ValueError("bad"))


def test_budget_validation_and_bound():
    assert AttemptBudget().total_bound_s() == pytest.approx(59.0)
    with pytest.raises(DomainError):
        AttemptBudget(max_attempts=0)
    with pytest.raises(DomainError):
        AttemptBudget(poll_interval_s=-1)
    with pytest.raises(DomainError):
        AttemptBudget(transport_retries=-1)


@pytest.mark.asyncio
async def test_succeeded_without_artifact_is_a_provider_failure(clock):
    status = ScriptedStatus(JobStatus(kind="SUCCEEDED", artifact=None))
    watcher = _watcher(clock, max_attempts=3)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", status)

    assert ei.value.code == "PROVIDER_FAILED"
    assert len(status.calls) == 1

    with pytest.raises(DomainError) as ei2:
        await watcher.watch("job-2", ScriptedStatus(JobStatus.succeeded("")))
    assert ei2.value.code == "PROVIDER_FAILED"


@pytest.mark.asyncio
async def test_cancel_during_transport_retry(clock):
    cancel = asyncio.Event()
    calls: list[str] = []

    async def flaky(job_id: str) -> JobStatus:
        calls.append(job_id)
        cancel.set()
        raise ProviderUnavailable("blip")

    watcher = _watcher(clock, max_attempts=5, transport_retries=3, transport_retry_delay_s=0.5)

    with pytest.raises(DomainError) as ei:
        await watcher.watch("job-1", flaky, cancel=cancel)

    assert ei.value.code == "CANCELLED"
    assert calls == ["job-1"]


@pytest.mark.asyncio
async def test_cancel_interrupts_the_transport_retry_delay():
    watcher = JobWatcher(
        AttemptBudget(max_attempts=5, transport_retries=3, transport_retry_delay_s=3600.0),
        logger=get_logger().bind(component="test-watcher"),
    )
    status = ScriptedStatus(ProviderUnavailable("down"))
    cancel = asyncio.Event()

    task = asyncio.create_task(watcher.watch("job-1", status, cancel=cancel))
    await asyncio.sleep(0.05)
    cancel.set()

    with pytest.raises(DomainError) as ei:
        await asyncio.wait_for(task, timeout=1.0)
    assert ei.value.code == "CANCELLED"
    assert len(status.calls) == 1


@pytest.mark.asyncio
async def test_task_cancellation_propagates_and_is_logged():
    configure_logging(level="DEBUG", json_logs=True)
    with capture_logs() as logs:
        watcher = JobWatcher(
            AttemptBudget(max_attempts=5, poll_interval_s=3600.0),
            logger=get_logger().bind(component="test-watcher"),
        )
        status = ScriptedStatus(JobStatus.pending())

        task = asyncio.create_task(watcher.watch("job-1", status))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    finished = [e for e in logs if e["event"] == "watch.finished"]
    assert len(finished) == 1
    assert finished[0]["state"] == "CANCELLED"
    assert finished[0]["attempts"] == 1
    assert finished[0]["job_id"] == "job-1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "script,budget,expected_state,expected_attempts",
    [
        ((JobStatus.pending(), JobStatus.succeeded("X")), {"max_attempts": 3}, "SUCCEEDED", 2),
        ((JobStatus.failed("nope"),), {"max_attempts": 3}, "FAILED", 1),
        ((JobStatus.pending(),), {"max_attempts": 3}, "TIMED_OUT", 3),
        ((ProviderUnavailable("down"),), {"max_attempts": 3, "transport_retries": 1}, "PROVIDER_ERROR", 0),
    ],
)
async def test_every_outcome_logs_watch_finished(clock, script, budget, expected_state, expected_attempts):
    configure_logging(level="DEBUG", json_logs=True)
    with capture_logs() as logs:
        watcher = _watcher(clock, poll_interval_s=1.0, **budget)
        try:
            await watcher.watch("job-1", ScriptedStatus(*script))
        except DomainError:
            pass

    finished = [e for e in logs if e["event"] == "watch.finished"]
    assert len(finished) == 1
    assert finished[0]["state"] == expected_state
    assert finished[0]["attempts"] == expected_attempts
    assert finished[0]["log_level"] == "info"


@pytest.mark.asyncio
async def test_cancel_event_logs_cancelled_state(clock):
    configure_logging(level="DEBUG", json_logs=True)
    cancel = asyncio.Event()
    cancel.set()
    with capture_logs() as logs:
        with pytest.raises(DomainError):
            await _watcher(clock, max_attempts=3).watch("job-1", ScriptedStatus(JobStatus.pending()), cancel=cancel)

    finished = [e for e in logs if e["event"] == "watch.finished"]
    assert [e["state"] for e in finished] == ["CANCELLED"]
