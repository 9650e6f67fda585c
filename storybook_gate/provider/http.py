from __future__ import annotations

from typing import Any

import httpx

from ..domain.errors import PROVIDER_ERROR, DomainError, ProviderUnavailable


async def request_json(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    **kwargs: Any,
) -> dict[str, Any]:
    """Send a request and return its JSON object body.

    Transport failures and 5xx raise ProviderUnavailable (retryable); 4xx and
    malformed bodies raise PROVIDER_ERROR.
    """

    try:
        resp = await http.request(method, url, headers=headers, **kwargs)
    except httpx.TransportError as e:
        raise ProviderUnavailable(f"{method} {url}: {e}") from e

    if resp.status_code >= 500:
        raise ProviderUnavailable(f"{method} {url}: HTTP {resp.status_code}")
    if resp.status_code >= 400:
        raise DomainError(
            code=PROVIDER_ERROR,
            message=f"provider rejected request: HTTP {resp.status_code}",
            details={"path": url, "body": resp.text[:400]},
        )

    try:
        data = resp.json()
    except ValueError as e:
        raise DomainError(
            code=PROVIDER_ERROR,
            message="provider returned invalid JSON",
            details={"path": url},
        ) from e
    if not isinstance(data, dict):
        raise DomainError(code=PROVIDER_ERROR, message="provider returned unexpected payload", details={"path": url})
    return data
