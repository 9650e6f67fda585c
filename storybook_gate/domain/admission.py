from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass

from .clock import SYSTEM_CLOCK, Clock
from .errors import INVALID_ARGUMENT, DomainError


@dataclass(frozen=True)
class WindowConfig:
    interval_s: float
    max_requests: int

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise DomainError(
                code=INVALID_ARGUMENT,
                message="interval_s must be > 0.",
                details={"interval_s": self.interval_s},
            )
        if self.max_requests < 0:
            raise DomainError(
                code=INVALID_ARGUMENT,
                message="max_requests must be >= 0.",
                details={"max_requests": self.max_requests},
            )


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[str, deque[float]] = {}


class AdmissionLimiter:
    """Per-identifier sliding-window limiter.

    Each identifier keeps the instants of its admitted requests that are still
    inside the trailing window. Expired instants are purged lazily on every
    access, so correctness never depends on `cleanup()` running; the sweep only
    bounds memory for identifiers that stop sending traffic.

    Identifiers are spread across lock shards: operations on one identifier are
    mutually exclusive, while identifiers on different shards never contend.
    """

    def __init__(self, config: WindowConfig, *, clock: Clock = SYSTEM_CLOCK, shards: int = 64) -> None:
        self._config = config
        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(max(1, shards)))

    @property
    def config(self) -> WindowConfig:
        return self._config

    def _shard(self, identifier: str) -> _Shard:
        return self._shards[hash(identifier) % len(self._shards)]

    def _purge(self, events: deque[float], now: float) -> None:
        # A timestamp is live while now - t < interval.
        cutoff = now - self._config.interval_s
        while events and events[0] <= cutoff:
            events.popleft()

    def check(self, identifier: str) -> bool:
        """Admit and record a request for `identifier` if its quota allows."""

        if self._config.max_requests == 0:
            return False

        shard = self._shard(identifier)
        with shard.lock:
            now = self._clock.monotonic()
            events = shard.entries.get(identifier)
            if events is None:
                events = deque()
                shard.entries[identifier] = events
            self._purge(events, now)

            if len(events) < self._config.max_requests:
                events.append(now)
                return True
            return False

    def remaining(self, identifier: str) -> int:
        shard = self._shard(identifier)
        with shard.lock:
            events = shard.entries.get(identifier)
            if not events:
                return self._config.max_requests
            self._purge(events, self._clock.monotonic())
            return max(0, self._config.max_requests - len(events))

    def retry_after(self, identifier: str) -> float | None:
        """Seconds until `identifier` regains a slot.

        None when a slot is free now, or when the limiter never admits anything.
        """

        if self._config.max_requests == 0:
            return None

        shard = self._shard(identifier)
        with shard.lock:
            events = shard.entries.get(identifier)
            if not events:
                return None
            now = self._clock.monotonic()
            self._purge(events, now)
            if len(events) < self._config.max_requests:
                return None
            return max(0.0, (events[0] + self._config.interval_s) - now)

    def reset(self, identifier: str) -> None:
        shard = self._shard(identifier)
        with shard.lock:
            shard.entries.pop(identifier, None)

    def cleanup(self) -> int:
        """Drop identifiers with no live timestamps; return how many were removed."""

        removed = 0
        for shard in self._shards:
            with shard.lock:
                now = self._clock.monotonic()
                stale: list[str] = []
                for identifier, events in shard.entries.items():
                    self._purge(events, now)
                    if not events:
                        stale.append(identifier)
                for identifier in stale:
                    del shard.entries[identifier]
                removed += len(stale)
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total
