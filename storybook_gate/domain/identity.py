from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from .admission import AdmissionLimiter

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_ms: int | None


def client_identifier(headers: Mapping[str, str], remote_addr: str | None) -> str:
    """First X-Forwarded-For hop, else the socket address, else "unknown"."""

    forwarded = None
    for key, value in headers.items():
        if key.lower() == "x-forwarded-for":
            forwarded = value
            break

    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    return (remote_addr or "").strip() or UNKNOWN_CLIENT


def check_rate_limit(
    limiter: AdmissionLimiter,
    headers: Mapping[str, str],
    remote_addr: str | None,
) -> RateLimitDecision:
    identifier = client_identifier(headers, remote_addr)
    allowed = limiter.check(identifier)
    retry_after_ms = None
    if not allowed:
        retry_after_s = limiter.retry_after(identifier)
        if retry_after_s is not None:
            retry_after_ms = max(0, int(retry_after_s * 1000))
    return RateLimitDecision(
        allowed=allowed,
        remaining=limiter.remaining(identifier),
        retry_after_ms=retry_after_ms,
    )
