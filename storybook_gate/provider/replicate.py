from __future__ import annotations

from typing import Any

import httpx

from ..domain.errors import NOT_CONFIGURED, PROVIDER_ERROR, DomainError
from ..domain.styles import NEGATIVE_PROMPT, build_prompt
from ..domain.watcher import JobStatus
from .http import request_json

_PENDING_STATUSES = {"starting", "processing"}


def _artifact_from_output(output: Any) -> str | None:
    if isinstance(output, list):
        return str(output[0]) if output else None
    if output is None:
        return None
    return str(output)


def prediction_to_status(prediction: dict[str, Any]) -> JobStatus:
    """Map a Replicate prediction object onto the watcher's three outcomes."""

    status = str(prediction.get("status") or "").lower()
    if status in _PENDING_STATUSES:
        return JobStatus.pending()

    if status == "succeeded":
        artifact = _artifact_from_output(prediction.get("output"))
        if artifact is None:
            return JobStatus.failed("prediction succeeded without output")
        return JobStatus.succeeded(artifact)

    if status == "failed":
        return JobStatus.failed(f"Prediction failed: {prediction.get('error')}")

    if status == "canceled":
        return JobStatus.failed("Prediction canceled")

    raise DomainError(
        code=PROVIDER_ERROR,
        message="unknown prediction status",
        details={"status": status, "prediction_id": prediction.get("id")},
    )


class ReplicateClient:
    """Async client for Replicate predictions: submit a job, read its status."""

    def __init__(
        self,
        *,
        api_token: str | None,
        model_version: str,
        logger,
        base_url: str = "https://api.replicate.com/v1",
        timeout_s: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_token:
            raise DomainError(
                code=NOT_CONFIGURED,
                message="No AI service configured. Set REPLICATE_API_TOKEN or provider.api_token.",
            )
        self._model_version = model_version
        self._logger = logger
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
        self._headers = {
            "Authorization": f"Token {api_token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def submit(self, *, photo: str, style: str) -> str:
        body = {
            "version": self._model_version,
            "input": {
                "image": photo,
                "prompt": build_prompt(style),
                "negative_prompt": NEGATIVE_PROMPT,
                "width": 1024,
                "height": 1024,
                "num_outputs": 1,
                "guidance_scale": 7,
                "num_inference_steps": 30,
            },
        }
        prediction = await self._request("POST", "/predictions", json=body)
        job_id = prediction.get("id")
        if not job_id:
            raise DomainError(
                code=PROVIDER_ERROR,
                message="provider response has no prediction id",
                details={"keys": sorted(prediction.keys())},
            )
        self._logger.info("provider.submit", job_id=job_id, style=style)
        return str(job_id)

    async def status(self, job_id: str) -> JobStatus:
        prediction = await self._request("GET", f"/predictions/{job_id}")
        return prediction_to_status(prediction)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        return await request_json(self._http, method, path, headers=self._headers, **kwargs)
