from __future__ import annotations

import asyncio

import pytest

from sentx_backend.config.settings import StreamConfig, StreamKind
from sentx_backend.events.bus import EventBus
from sentx_backend.scheduling.checkpoint_store import CheckpointStore
from sentx_backend.scheduling.poll_loop import PollLoop
from sentx_backend.scheduling.scheduler import PollScheduler
from sentx_backend.scheduling.types import JobKind, make_job_id


def test_job_ids():
    assert make_job_id("sales", JobKind.Poll) == "poll:sales"
    assert make_job_id("sales", JobKind.Replay, suffix="boot") == "replay:sales:boot"


@pytest.mark.asyncio
async def test_scheduler_runs_first_tick_immediately_and_stops(
    tmp_path, scripted_fetcher, scripted_queue, make_event
):
    checkpoints = CheckpointStore(tmp_path / "checkpoints.json", ["sales"])
    checkpoints.load()
    queue = scripted_queue({"sales": [[make_event("A1", 1)]]})
    loop = PollLoop(
        StreamConfig(stream_id="sales", kind=StreamKind.Sales, interval_seconds=60),
        scripted_fetcher("sales"),
        queue,
        checkpoints,
        EventBus(),
    )
    scheduler = PollScheduler([loop])
    assert loop.stop_event is scheduler.stop_event

    scheduler.start()
    try:
        assert scheduler.is_running()
        assert set(scheduler.get_next_run_times()) == {"sales"}
        for _ in range(100):
            if queue.requests:
                break
            await asyncio.sleep(0.01)
        assert len(queue.requests) == 1
    finally:
        await scheduler.stop()

    assert not scheduler.is_running()
    assert scheduler.stop_event.is_set()
    # 停止后 tick 不再抓取
    assert await loop.tick() == []
    assert len(queue.requests) == 1
