from __future__ import annotations

import asyncio
from typing import Protocol

from .domain.admission import AdmissionLimiter
from .domain.errors import ADMISSION_DENIED, PROVIDER_ERROR, DomainError, ProviderUnavailable
from .domain.watcher import JobStatus, JobWatcher


class ImageProvider(Protocol):
    async def submit(self, *, photo: str, style: str) -> str: ...

    async def status(self, job_id: str) -> JobStatus: ...


class PersonalizationService:
    """Request flow: admit the caller, submit the job, wait for the artifact."""

    def __init__(self, *, limiter: AdmissionLimiter, provider: ImageProvider, watcher: JobWatcher, logger) -> None:
        self._limiter = limiter
        self._provider = provider
        self._watcher = watcher
        self._logger = logger

    def admit(self, identifier: str) -> int:
        """Record an admission for `identifier` and return its remaining quota.

        Raises ADMISSION_DENIED when the quota is used up.
        """

        if self._limiter.check(identifier):
            return self._limiter.remaining(identifier)

        retry_after_s = self._limiter.retry_after(identifier)
        retry_after_ms = None if retry_after_s is None else max(0, int(retry_after_s * 1000))
        self._logger.warning("admission.denied", identifier=identifier, retry_after_ms=retry_after_ms)
        raise DomainError(
            code=ADMISSION_DENIED,
            message="Too many requests. Please try again later.",
            details={"identifier": identifier, "remaining": 0},
            retry_after_ms=retry_after_ms,
        )

    async def personalize(
        self,
        *,
        identifier: str,
        photo: str,
        style: str,
        cancel: asyncio.Event | None = None,
    ) -> str:
        remaining = self.admit(identifier)
        self._logger.info("admission.allowed", identifier=identifier, remaining=remaining)

        try:
            job_id = await self._provider.submit(photo=photo, style=style)
        except ProviderUnavailable as e:
            raise DomainError(
                code=PROVIDER_ERROR,
                message=f"job submission failed: {e}",
                details={"identifier": identifier},
            ) from e

        return await self.wait(job_id, cancel=cancel)

    async def wait(self, job_id: str, *, cancel: asyncio.Event | None = None) -> str:
        return await self._watcher.watch(job_id, self._provider.status, cancel=cancel)
