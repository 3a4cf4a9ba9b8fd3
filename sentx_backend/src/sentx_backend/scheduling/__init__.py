"""Scheduling package public API.

Primary entrypoints:
- RequestQueue: the single serialisation point for SentX requests.
- PollScheduler / PollLoop: periodic per-stream polling with baseline phase.
- ReplayEngine: one-shot startup replay.

Utilities:
- TokenBucket, GlobalCooldownPolicy: admission control and 429 backoff.
- CheckpointStore: persistent per-stream position.
- JobKind, make_job_id: Unified job identifiers.
"""

from .checkpoint_store import Checkpoint, CheckpointStore
from .poll_loop import PollLoop, PollPhase
from .replay import ReplayEngine, ReplayReport
from .request_queue import GlobalCooldownPolicy, QueueClosedError, RequestQueue
from .scheduler import PollScheduler
from .token_bucket import TokenBucket
from .types import JobKind, fetch_batch, make_job_id

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "GlobalCooldownPolicy",
    "JobKind",
    "PollLoop",
    "PollPhase",
    "PollScheduler",
    "QueueClosedError",
    "ReplayEngine",
    "ReplayReport",
    "RequestQueue",
    "TokenBucket",
    "fetch_batch",
    "make_job_id",
]
