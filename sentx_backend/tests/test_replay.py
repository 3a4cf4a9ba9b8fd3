from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sentx_backend.collectors.base import RawEvent, SentxApiError
from sentx_backend.config.settings import StreamConfig, StreamKind
from sentx_backend.events.bus import EventBus
from sentx_backend.events.models import Topic
from sentx_backend.scheduling.replay import ReplayEngine, filter_in_window

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str, minutes_ago: float) -> RawEvent:
    return RawEvent(id=event_id, timestamp=NOW - timedelta(minutes=minutes_ago), payload={})


def _stream(stream_id: str, kind=StreamKind.Sales, replay=True) -> StreamConfig:
    return StreamConfig(stream_id=stream_id, kind=kind, replay=replay)


@pytest.mark.asyncio
async def test_replay_emits_only_events_inside_window(scripted_fetcher, scripted_queue):
    batch = [_event("old", 20), _event("mid", 5), _event("new", 1)]
    queue = scripted_queue({"sales": [batch]})
    bus = EventBus()
    received = []
    bus.subscribe(Topic.Sales, received.append)

    engine = ReplayEngine(
        [(_stream("sales"), scripted_fetcher("sales"))],
        queue,
        bus,
        window=timedelta(minutes=10),
        limit=50,
        clock=lambda: NOW,
    )
    report = await engine.run()

    assert [e.id for e in received] == ["mid", "new"]
    assert all(e.is_replay for e in received)
    assert report.emitted == {"sales": 2}
    assert report.total_emitted == 2
    assert queue.requests[0].params["limit"] == 50


@pytest.mark.asyncio
async def test_replay_failure_is_isolated_per_stream(scripted_fetcher, scripted_queue):
    queue = scripted_queue(
        {
            "sales": [SentxApiError("boom", status=502)],
            "mints": [[_event("m1", 2)]],
        }
    )
    bus = EventBus()
    received = []
    bus.subscribe(Topic.Mints, received.append)

    engine = ReplayEngine(
        [
            (_stream("sales"), scripted_fetcher("sales")),
            (_stream("mints", kind=StreamKind.Mints), scripted_fetcher("mints")),
        ],
        queue,
        bus,
        clock=lambda: NOW,
    )
    report = await engine.run()

    assert "sales" in report.failed
    assert report.emitted == {"mints": 1}
    assert [e.id for e in received] == ["m1"]
    assert received[0].topic == Topic.Mints


@pytest.mark.asyncio
async def test_streams_with_replay_disabled_are_skipped(scripted_fetcher, scripted_queue):
    queue = scripted_queue({"sales": [[_event("a", 1)]]})
    engine = ReplayEngine(
        [(_stream("sales", replay=False), scripted_fetcher("sales"))],
        queue,
        EventBus(),
        clock=lambda: NOW,
    )

    report = await engine.run()

    assert queue.requests == []
    assert report.total_emitted == 0


def test_window_is_inclusive_at_both_ends():
    start = NOW - timedelta(minutes=10)
    events = [_event("edge-start", 10), _event("edge-end", 0), _event("outside", 10.01)]

    kept = filter_in_window(events, start, NOW)

    assert [e.id for e in kept] == ["edge-start", "edge-end"]
