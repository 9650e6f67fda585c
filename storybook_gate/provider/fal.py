from __future__ import annotations

from typing import Any

import httpx

from ..domain.errors import NOT_CONFIGURED, PROVIDER_ERROR, DomainError
from ..domain.styles import style_prompt
from ..domain.watcher import JobStatus
from .http import request_json

_PENDING_STATUSES = {"IN_QUEUE", "IN_PROGRESS"}

FAL_NEGATIVE_PROMPT = "worst quality, low quality, blurry"


class FalClient:
    """fal.ai queue client: enqueue a request, then poll its status.

    A COMPLETED status costs one extra request to fetch the result payload.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        logger,
        model: str = "fal-ai/face-to-sticker",
        base_url: str = "https://queue.fal.run",
        timeout_s: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise DomainError(code=NOT_CONFIGURED, message="fal.ai is not configured. Set FAL_KEY or provider.fal_key.")
        self._model = model.strip("/")
        self._logger = logger
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
        self._headers = {
            "Authorization": f"Key {api_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def submit(self, *, photo: str, style: str) -> str:
        body = {
            "image_url": photo,
            "prompt": style_prompt(style),
            "negative_prompt": FAL_NEGATIVE_PROMPT,
        }
        queued = await request_json(self._http, "POST", f"/{self._model}", headers=self._headers, json=body)
        request_id = queued.get("request_id")
        if not request_id:
            raise DomainError(
                code=PROVIDER_ERROR,
                message="provider response has no request id",
                details={"keys": sorted(queued.keys())},
            )
        self._logger.info("provider.submit", job_id=request_id, style=style, provider="fal")
        return str(request_id)

    async def status(self, job_id: str) -> JobStatus:
        state = await request_json(
            self._http,
            "GET",
            f"/{self._model}/requests/{job_id}/status",
            headers=self._headers,
        )
        status = str(state.get("status") or "").upper()
        if status in _PENDING_STATUSES:
            return JobStatus.pending()

        if status != "COMPLETED":
            raise DomainError(
                code=PROVIDER_ERROR,
                message="unknown request status",
                details={"status": status, "request_id": job_id},
            )

        if state.get("error"):
            return JobStatus.failed(f"fal.ai processing failed: {state['error']}")

        result = await request_json(self._http, "GET", f"/{self._model}/requests/{job_id}", headers=self._headers)
        return result_to_status(result)


def result_to_status(result: dict[str, Any]) -> JobStatus:
    image = result.get("image")
    url = image.get("url") if isinstance(image, dict) else None
    if not url:
        return JobStatus.failed("No image URL in fal.ai response")
    return JobStatus.succeeded(str(url))
