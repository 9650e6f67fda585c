from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal

import httpx

from .clock import SYSTEM_CLOCK, Clock
from .errors import (
    CANCELLED,
    INVALID_ARGUMENT,
    PROVIDER_ERROR,
    PROVIDER_FAILED,
    WATCH_TIMED_OUT,
    DomainError,
    ProviderUnavailable,
)

StatusKind = Literal["PENDING", "SUCCEEDED", "FAILED"]


class JobState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
    PROVIDER_ERROR = "PROVIDER_ERROR"


_STATE_BY_CODE: dict[str, JobState] = {
    PROVIDER_FAILED: JobState.FAILED,
    WATCH_TIMED_OUT: JobState.TIMED_OUT,
    CANCELLED: JobState.CANCELLED,
    PROVIDER_ERROR: JobState.PROVIDER_ERROR,
}


@dataclass(frozen=True)
class JobStatus:
    kind: StatusKind
    artifact: str | None = None
    error: str | None = None

    @classmethod
    def pending(cls) -> "JobStatus":
        return cls(kind="PENDING")

    @classmethod
    def succeeded(cls, artifact: str) -> "JobStatus":
        return cls(kind="SUCCEEDED", artifact=artifact)

    @classmethod
    def failed(cls, message: str) -> "JobStatus":
        return cls(kind="FAILED", error=message)


StatusFn = Callable[[str], Awaitable[JobStatus]]


@dataclass(frozen=True)
class AttemptBudget:
    max_attempts: int = 60
    poll_interval_s: float = 1.0

    # Consecutive transport failures tolerated inside one poll slot.
    # 0 surfaces the first failure as PROVIDER_ERROR.
    transport_retries: int = 2
    transport_retry_delay_s: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise DomainError(
                code=INVALID_ARGUMENT,
                message="max_attempts must be >= 1.",
                details={"max_attempts": self.max_attempts},
            )
        if self.poll_interval_s < 0 or self.transport_retry_delay_s < 0:
            raise DomainError(
                code=INVALID_ARGUMENT,
                message="delays must be >= 0.",
                details={
                    "poll_interval_s": self.poll_interval_s,
                    "transport_retry_delay_s": self.transport_retry_delay_s,
                },
            )
        if self.transport_retries < 0:
            raise DomainError(
                code=INVALID_ARGUMENT,
                message="transport_retries must be >= 0.",
                details={"transport_retries": self.transport_retries},
            )

    def total_bound_s(self) -> float:
        """Upper bound on time spent sleeping between polls."""
        return (self.max_attempts - 1) * self.poll_interval_s


_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ProviderUnavailable,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, _TRANSIENT_ERRORS)


class JobWatcher:
    """Await a submitted remote job by polling its status.

    Polls are strictly sequential: the next query starts `poll_interval_s`
    after the previous one returned. The watcher keeps no per-job state
    between calls, so one instance can serve any number of concurrent watches.
    """

    def __init__(self, budget: AttemptBudget, *, logger, clock: Clock = SYSTEM_CLOCK) -> None:
        self._budget = budget
        self._logger = logger
        self._clock = clock

    @property
    def budget(self) -> AttemptBudget:
        return self._budget

    async def watch(self, job_id: str, status_fn: StatusFn, *, cancel: asyncio.Event | None = None) -> str:
        """Poll `status_fn(job_id)` until the job resolves; return the artifact.

        Raises DomainError with code PROVIDER_FAILED, WATCH_TIMED_OUT,
        PROVIDER_ERROR or CANCELLED.
        """

        log = self._logger.bind(job_id=job_id)
        state = JobState.SUBMITTED
        attempts = 0
        started = self._clock.monotonic()

        try:
            while True:
                self._raise_if_cancelled(job_id, attempts, cancel)

                state = JobState.POLLING
                status = await self._query(job_id, status_fn, attempts, cancel, log)
                attempts += 1
                log.debug("watch.poll", attempt=attempts, status=status.kind)

                if status.kind == "SUCCEEDED":
                    if not status.artifact:
                        raise DomainError(
                            code=PROVIDER_FAILED,
                            message="job succeeded without an artifact",
                            details={"job_id": job_id, "attempts": attempts},
                        )
                    state = JobState.SUCCEEDED
                    return status.artifact

                if status.kind == "FAILED":
                    raise DomainError(
                        code=PROVIDER_FAILED,
                        message=status.error or "job failed",
                        details={"job_id": job_id, "attempts": attempts},
                    )

                if attempts >= self._budget.max_attempts:
                    raise DomainError(
                        code=WATCH_TIMED_OUT,
                        message="job still pending after the attempt budget was exhausted",
                        details={
                            "job_id": job_id,
                            "attempts": attempts,
                            "poll_interval_s": self._budget.poll_interval_s,
                        },
                    )

                await self._pause(self._budget.poll_interval_s, cancel)
        except DomainError as e:
            state = _STATE_BY_CODE.get(e.code, state)
            raise
        except asyncio.CancelledError:
            state = JobState.CANCELLED
            raise
        finally:
            elapsed_ms = int((self._clock.monotonic() - started) * 1000)
            log.info("watch.finished", state=state.value, attempts=attempts, elapsed_ms=elapsed_ms)

    async def _query(
        self,
        job_id: str,
        status_fn: StatusFn,
        attempts: int,
        cancel: asyncio.Event | None,
        log,
    ) -> JobStatus:
        failures = 0
        while True:
            try:
                return await status_fn(job_id)
            except DomainError:
                raise
            except Exception as e:  # noqa: BLE001
                failures += 1
                if not is_transient(e) or failures > self._budget.transport_retries:
                    raise DomainError(
                        code=PROVIDER_ERROR,
                        message=f"status query failed: {e}",
                        details={
                            "job_id": job_id,
                            "attempts": attempts,
                            "transport_failures": failures,
                            "error_type": type(e).__name__,
                        },
                    ) from e

                log.warning(
                    "watch.transport_retry",
                    attempt=attempts + 1,
                    failures=failures,
                    error=str(e),
                )

            await self._pause(self._budget.transport_retry_delay_s, cancel)
            self._raise_if_cancelled(job_id, attempts, cancel)

    @staticmethod
    def _raise_if_cancelled(job_id: str, attempts: int, cancel: asyncio.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise DomainError(
                code=CANCELLED,
                message="watch cancelled by caller",
                details={"job_id": job_id, "attempts": attempts},
            )

    async def _pause(self, seconds: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await self._clock.sleep(seconds)
            return
        if cancel.is_set():
            return

        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
