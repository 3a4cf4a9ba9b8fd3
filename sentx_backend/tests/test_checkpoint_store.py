from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from sentx_backend.config.settings import DominanceRule
from sentx_backend.scheduling.checkpoint_store import Checkpoint, CheckpointStore

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(name="store")
def fixture_store(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoints.json", ["mints", "sales"])
    store.load()
    return store


def test_missing_file_gives_null_checkpoints(store):
    for stream_id in ("mints", "sales"):
        checkpoint = store.get(stream_id)
        assert checkpoint.last_timestamp is None
        assert checkpoint.last_transaction_id is None
        assert not checkpoint.is_set


def test_checkpoint_never_moves_backwards(store, make_event):
    assert store.advance("mints", make_event("A100")) is True
    assert store.advance("mints", make_event("A099", -1)) is False
    assert store.advance("mints", make_event("A100-dup", 0)) is False

    checkpoint = store.get("mints")
    assert checkpoint.last_timestamp == T0
    assert checkpoint.last_transaction_id == "A100"

    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert data["mints"] == {
        "lastTimestamp": "2025-03-01T12:00:00Z",
        "lastTransactionId": "A100",
    }
    assert data["sales"] == {"lastTimestamp": None, "lastTransactionId": None}


def test_checkpoints_survive_restart(tmp_path, make_event):
    path = tmp_path / "checkpoints.json"
    first = CheckpointStore(path, ["mints"])
    first.load()
    first.advance("mints", make_event("0.0.123@1700000000.000000001", 1.5))

    second = CheckpointStore(path, ["mints"])
    loaded = second.load()

    assert loaded["mints"].last_timestamp == T0 + timedelta(seconds=1.5)
    assert loaded["mints"].last_transaction_id == "0.0.123@1700000000.000000001"


def test_unknown_streams_are_preserved(tmp_path, make_event):
    path = tmp_path / "checkpoints.json"
    path.write_text(
        json.dumps(
            {"retired": {"lastTimestamp": "2024-01-01T00:00:00Z", "lastTransactionId": "X"}}
        ),
        encoding="utf-8",
    )
    store = CheckpointStore(path, ["mints"])
    store.load()
    store.advance("mints", make_event("A1"))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["retired"]["lastTransactionId"] == "X"
    assert data["mints"]["lastTransactionId"] == "A1"


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "checkpoints.json"
    path.write_text("{not json", encoding="utf-8")

    store = CheckpointStore(path, ["mints"])
    loaded = store.load()

    assert loaded["mints"].last_timestamp is None


def test_write_failure_keeps_in_memory_state(tmp_path, make_event):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = CheckpointStore(blocker / "checkpoints.json", ["mints"])
    store.load()

    assert store.advance("mints", make_event("A100")) is True
    assert store.get_stats()["save_failures"] == 1
    assert store.get("mints").last_transaction_id == "A100"
    assert store.is_dominated("mints", make_event("A100"))


def test_dominance_suppresses_checkpointed_event(store, make_event):
    store.advance("mints", make_event("A100"))

    assert store.is_dominated("mints", make_event("A100")) is True
    assert store.is_dominated("mints", make_event("A101", 1)) is False
    assert store.is_dominated("mints", make_event("A050", -30)) is True


def test_timestamp_rule_keeps_same_instant_siblings(make_event):
    checkpoint = Checkpoint("mints", last_timestamp=T0, last_transaction_id="A100")

    # 同一时刻的另一笔交易，ID 字典序更小也不会被吞掉
    assert checkpoint.dominates(make_event("A099"), DominanceRule.Timestamp) is False
    assert checkpoint.dominates(make_event("B200"), DominanceRule.Timestamp) is False


def test_lexical_rule(make_event):
    checkpoint = Checkpoint("mints", last_timestamp=T0, last_transaction_id="A100")

    assert checkpoint.dominates(make_event("A100"), DominanceRule.Lexical) is True
    assert checkpoint.dominates(make_event("A099"), DominanceRule.Lexical) is True
    assert checkpoint.dominates(make_event("A101"), DominanceRule.Lexical) is False
    assert checkpoint.dominates(make_event("A101", 1), DominanceRule.Lexical) is False


def test_unset_checkpoint_dominates_nothing(make_event):
    checkpoint = Checkpoint("mints")

    assert checkpoint.dominates(make_event("A1", -3600)) is False
    assert checkpoint.is_older_than(make_event("A1", -3600)) is True
