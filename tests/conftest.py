"""
Pytest configuration and fixtures for spectraview.

Provides cross-platform event loop configuration, a recording fake transport
and a deterministic clock.
"""

import asyncio
import sys
from typing import Any, Mapping

import pytest

from spectraview.config import PipelineSettings
from spectraview.delivery.transport import Transport

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class RecordingTransport(Transport):
    """Transport that records every call.

    ``outcomes`` is consumed one entry per ``send``; once exhausted every
    send returns ``default``.
    """

    def __init__(self, outcomes=None, default: bool = True, delay: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.delay = delay
        self.calls: list[tuple[str, Any, dict]] = []
        self.best_effort_calls: list[tuple[str, Any, dict]] = []
        self.started = 0
        self.closed = 0

    async def start(self) -> None:
        self.started += 1

    async def aclose(self) -> None:
        self.closed += 1

    async def send(self, url: str, payload: Any, headers: Mapping[str, str]) -> bool:
        self.calls.append((url, payload, dict(headers)))
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.outcomes:
            return self.outcomes.pop(0)
        return self.default

    def send_best_effort(self, url: str, payload: Any, headers: Mapping[str, str]) -> None:
        self.best_effort_calls.append((url, payload, dict(headers)))

    def calls_to(self, suffix: str) -> list[tuple[str, Any, dict]]:
        return [c for c in self.calls if c[0].endswith(suffix)]

    @property
    def event_calls(self) -> list[tuple[str, Any, dict]]:
        return self.calls_to("/events")


class FakeClock:
    """Monotonic millisecond clock advancing ``step`` per call."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def failing_transport():
    return RecordingTransport(default=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Online settings with long timers so only explicit triggers fire."""
    return PipelineSettings(
        api_endpoint="https://collector.test/",
        api_key="test-key",
        app_id="test-app",
        batch_size=50,
        flush_interval=3600.0,
        heartbeat_interval=3600.0,
        max_local_events=1000,
        _env_file=None,
    )


@pytest.fixture
def offline_settings():
    return PipelineSettings(
        api_endpoint=None,
        app_id="offline-app",
        flush_interval=3600.0,
        heartbeat_interval=3600.0,
        _env_file=None,
    )


@pytest.fixture
def transport_factory():
    return RecordingTransport
