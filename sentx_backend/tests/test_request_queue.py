from __future__ import annotations

import asyncio

import pytest

from sentx_backend.collectors.base import RateLimitedError, RequestSpec, SentxApiError
from sentx_backend.scheduling.request_queue import (
    GlobalCooldownPolicy,
    QueueClosedError,
    RequestQueue,
)
from sentx_backend.scheduling.token_bucket import TokenBucket


class RecordingTransport:
    """Records (stream_id, clock time) of every dispatch and replays scripted outcomes."""

    def __init__(self, clock, outcomes=None):
        self.clock = clock
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.calls = []

    async def __call__(self, spec: RequestSpec):
        self.calls.append((spec.stream_id, self.clock()))
        script = self.outcomes.get(spec.stream_id)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {"stream": spec.stream_id}


def _spec(stream_id: str) -> RequestSpec:
    return RequestSpec(path="/v1/public/market/activity", stream_id=stream_id)


def _build_queue(clock, transport, *, initial_tokens=None):
    bucket = TokenBucket(
        max_tokens=3, refill_rate=1.0, initial_tokens=initial_tokens, clock=clock
    )
    queue = RequestQueue(
        transport,
        bucket,
        policy=GlobalCooldownPolicy(cooldown_seconds=2.0),
        token_poll_seconds=0.25,
        sleep=clock.sleep,
    )
    return queue, bucket


async def _drain(queue: RequestQueue) -> None:
    while await queue.process_next():
        pass


@pytest.mark.asyncio
async def test_dispatches_in_fifo_order(fake_clock):
    transport = RecordingTransport(fake_clock)
    queue, _ = _build_queue(fake_clock, transport)

    futures = [queue.enqueue(_spec(name)) for name in ("a", "b", "c")]
    await _drain(queue)

    assert [name for name, _ in transport.calls] == ["a", "b", "c"]
    assert [f.result() for f in futures] == [
        {"stream": "a"},
        {"stream": "b"},
        {"stream": "c"},
    ]
    assert queue.qsize() == 0


@pytest.mark.asyncio
async def test_throughput_limited_across_streams(fake_clock):
    transport = RecordingTransport(fake_clock)
    queue, _ = _build_queue(fake_clock, transport)

    for name in ("mints", "sales", "mints", "sales", "mints"):
        queue.enqueue(_spec(name))
    await _drain(queue)

    times = [t - 1000.0 for _, t in transport.calls]
    # 满桶 3 个突发，之后每秒一个，与请求属于哪个流无关
    assert times == [0.0, 0.0, 0.0, 1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limited_request_retried_first_after_cooldown(fake_clock):
    transport = RecordingTransport(
        fake_clock, outcomes={"a": [RateLimitedError()]}
    )
    queue, _ = _build_queue(fake_clock, transport)

    first = queue.enqueue(_spec("a"))
    second = queue.enqueue(_spec("b"))

    await queue.process_next()
    assert queue.qsize() == 2
    assert not first.done()
    assert 2.0 in fake_clock.sleeps

    await _drain(queue)

    assert transport.calls == [("a", 1000.0), ("a", 1002.0), ("b", 1002.0)]
    assert first.result() == {"stream": "a"}
    assert second.result() == {"stream": "b"}
    stats = queue.get_stats()
    assert stats["rate_limited"] == 1
    assert stats["succeeded"] == 2
    assert queue.in_cooldown is False


@pytest.mark.asyncio
async def test_retry_after_longer_than_cooldown_is_honoured(fake_clock):
    transport = RecordingTransport(
        fake_clock, outcomes={"a": [RateLimitedError(retry_after=5.0)]}
    )
    queue, _ = _build_queue(fake_clock, transport)

    future = queue.enqueue(_spec("a"))
    await _drain(queue)

    assert 5.0 in fake_clock.sleeps
    assert transport.calls[1] == ("a", 1005.0)
    assert future.result() == {"stream": "a"}


@pytest.mark.asyncio
async def test_non_rate_limit_failure_rejects_only_that_request(fake_clock):
    transport = RecordingTransport(
        fake_clock, outcomes={"b": [SentxApiError("boom", status=500)]}
    )
    queue, _ = _build_queue(fake_clock, transport)

    a = queue.enqueue(_spec("a"))
    b = queue.enqueue(_spec("b"))
    c = queue.enqueue(_spec("c"))
    await _drain(queue)

    assert a.result() == {"stream": "a"}
    with pytest.raises(SentxApiError):
        b.result()
    assert c.result() == {"stream": "c"}
    # 非 429 错误不重试
    assert [name for name, _ in transport.calls] == ["a", "b", "c"]
    assert queue.get_stats()["failed"] == 1


@pytest.mark.asyncio
async def test_cancelled_caller_is_skipped(fake_clock):
    transport = RecordingTransport(fake_clock)
    queue, _ = _build_queue(fake_clock, transport)

    abandoned = queue.enqueue(_spec("a"))
    kept = queue.enqueue(_spec("b"))
    abandoned.cancel()
    await _drain(queue)

    assert [name for name, _ in transport.calls] == ["b"]
    assert kept.result() == {"stream": "b"}
    assert queue.get_stats()["dropped"] == 1


@pytest.mark.asyncio
async def test_stop_rejects_pending_requests(fake_clock):
    transport = RecordingTransport(fake_clock)
    queue, _ = _build_queue(fake_clock, transport)

    pending = queue.enqueue(_spec("a"))
    await queue.stop()

    with pytest.raises(QueueClosedError):
        pending.result()
    with pytest.raises(QueueClosedError):
        queue.enqueue(_spec("b"))


@pytest.mark.asyncio
async def test_worker_serves_requests_until_stopped():
    calls = []

    async def transport(spec):
        calls.append(spec.stream_id)
        return {"ok": True}

    queue = RequestQueue(transport, TokenBucket(max_tokens=3, refill_rate=1.0))
    queue.start()
    try:
        result = await asyncio.wait_for(queue.request(_spec("a")), timeout=2)
        assert result == {"ok": True}
        assert queue.is_running()
    finally:
        await queue.stop()

    assert calls == ["a"]
    assert not queue.is_running()
