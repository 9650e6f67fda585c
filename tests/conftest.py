from __future__ import annotations

import asyncio

import pytest

from storybook_gate.observability.logging import clear_request_context, configure_logging


class ManualClock:
    """Clock whose time only moves when told to; sleeps advance it instantly."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(autouse=True)
def _quiet_logging():
    configure_logging(level="ERROR", json_logs=True)
    yield
    clear_request_context()
