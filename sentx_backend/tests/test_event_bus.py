from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from sentx_backend.events.bus import EventBus
from sentx_backend.events.models import StreamEvent, Topic


def _event(event_id: str = "tx-1", is_replay: bool = False) -> StreamEvent:
    return StreamEvent(
        stream_id="bored_ape_mints",
        topic=Topic.Mints,
        id=event_id,
        timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        payload={"nft_name": "Ape"},
        is_replay=is_replay,
    )


def test_handlers_called_in_subscription_order():
    bus = EventBus()
    calls = []
    bus.subscribe(Topic.Mints, lambda e: calls.append(("first", e.id)))
    bus.subscribe(Topic.Mints, lambda e: calls.append(("second", e.id)))
    bus.subscribe(Topic.Sales, lambda e: calls.append(("sales", e.id)))

    delivered = bus.publish(Topic.Mints, _event())

    assert delivered == 2
    assert calls == [("first", "tx-1"), ("second", "tx-1")]


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(Topic.Mints, broken)
    bus.subscribe(Topic.Mints, lambda e: calls.append(e.id))

    assert bus.publish(Topic.Mints, _event()) == 1
    assert calls == ["tx-1"]
    assert bus.get_stats()["handler_errors"] == 1


def test_publish_without_subscribers():
    bus = EventBus()

    assert bus.publish(Topic.Listings, _event()) == 0
    assert bus.subscriber_count(Topic.Listings) == 0


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled_and_drained():
    bus = EventBus()
    seen = []

    async def handler(event):
        await asyncio.sleep(0)
        seen.append(event.id)

    async def broken(event):
        raise RuntimeError("async bug")

    bus.subscribe(Topic.Mints, handler)
    bus.subscribe(Topic.Mints, broken)
    bus.publish(Topic.Mints, _event("a"))
    bus.publish(Topic.Mints, _event("b"))

    await bus.drain()

    assert seen == ["a", "b"]
    assert bus.get_stats()["handler_errors"] == 2
    assert bus.get_stats()["pending_async_handlers"] == 0


def test_event_serialisation():
    data = _event(is_replay=True).to_dict()

    assert data == {
        "streamId": "bored_ape_mints",
        "topic": "mints",
        "id": "tx-1",
        "timestamp": "2025-03-01T12:00:00Z",
        "sourcePayload": {"nft_name": "Ape"},
        "isReplay": True,
    }
