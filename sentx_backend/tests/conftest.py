from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, List

import pytest

from sentx_backend.collectors.base import RawEvent, RequestSpec
from sentx_backend.config.settings import reset_settings

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is awaited."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedFetcher:
    """Fetcher whose parsed body is the body itself (a list of RawEvent)."""

    def __init__(self, stream_id: str):
        self.stream_id = stream_id
        self.limits: List[int] = []

    def build_request(self, limit: int) -> RequestSpec:
        self.limits.append(limit)
        return RequestSpec(path="/fake", params={"limit": limit}, stream_id=self.stream_id)

    def parse(self, body: Any) -> List[RawEvent]:
        return list(body or [])


class ScriptedQueue:
    """Stands in for RequestQueue; answers each request from a per-stream script.

    Script entries are either a list of RawEvent or an exception instance.
    """

    def __init__(self, scripts: dict | None = None):
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.requests: List[RequestSpec] = []

    async def request(self, spec: RequestSpec) -> Any:
        self.requests.append(spec)
        script = self.scripts.get(spec.stream_id, [])
        if not script:
            return []
        item = script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def make_event(event_id: str, offset_seconds: float = 0, **payload) -> RawEvent:
    return RawEvent(
        id=event_id,
        timestamp=T0 + timedelta(seconds=offset_seconds),
        payload=payload or {"id": event_id},
    )


@pytest.fixture(name="fake_clock")
def fixture_fake_clock():
    return FakeClock()


@pytest.fixture(name="make_event")
def fixture_make_event():
    return make_event


@pytest.fixture(name="scripted_fetcher")
def fixture_scripted_fetcher():
    return ScriptedFetcher


@pytest.fixture(name="scripted_queue")
def fixture_scripted_queue():
    return ScriptedQueue


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Keep SENTX_* variables from the developer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("SENTX_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()
