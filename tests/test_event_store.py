"""
Test Event Store

Append-only log: stage records accumulate, history projections read them
back, nothing can be rewritten.
"""

import sqlite3
import threading

import pytest

from conftest import make_record
from trustgate.common.models import PointSource, Stage
from trustgate.services.event_store import EventStore


def test_append_and_read_event_stages(event_store):
    record = make_record(stage=Stage.RECEIVED, flagged=False)
    assert event_store.append(record)
    assert event_store.append(record.at_stage(Stage.SYSTEM_VALIDATION))
    assert event_store.append(record.at_stage(Stage.PRE_CHAIN, flagged=True))

    stages = [r.stage for r in event_store.read_event("evt-1")]
    assert stages == [Stage.RECEIVED, Stage.SYSTEM_VALIDATION, Stage.PRE_CHAIN]
    assert all(r.id is not None for r in event_store.read_event("evt-1"))


def test_records_survive_reopen(tmp_path):
    path = tmp_path / "events.db"
    EventStore(path).append(make_record())

    reopened = EventStore(path).read_all()
    assert len(reopened) == 1
    assert reopened[0].event_id == "evt-1"
    assert reopened[0].payload == {"trustA": 40.0, "trustB": 40.0}


def test_concurrent_appends_are_all_kept(event_store):
    """Appends from many threads at once lose nothing."""
    def writer(n):
        for i in range(20):
            assert event_store.append(make_record(event_id=f"t{n}-{i}"))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    records = event_store.read_all()
    assert len(records) == 160
    assert len({r.event_id for r in records}) == 160
    assert [r.event_id for r in event_store.read_event("t3-0")] == ["t3-0"]


@pytest.mark.parametrize("statement", [
    "UPDATE events SET stage = 'post-chain'",
    "DELETE FROM events",
])
def test_rows_cannot_be_rewritten(event_store, statement):
    event_store.append(make_record())

    conn = sqlite3.connect(str(event_store.db_path))
    try:
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute(statement)
    finally:
        conn.close()

    assert len(event_store.read_all()) == 1


def test_recent_is_newest_first_and_limited(event_store):
    for i in range(5):
        event_store.append(make_record(event_id=f"evt-{i}"))

    recent = event_store.recent(limit=3)
    assert [r.event_id for r in recent] == ["evt-4", "evt-3", "evt-2"]


def test_recent_flagged_only_returns_flagged_records(event_store):
    event_store.append(make_record(event_id="calm", flagged=False))
    event_store.append(make_record(event_id="alarm", flagged=True))

    assert [r.event_id for r in event_store.recent_flagged()] == ["alarm"]


def test_read_for_group_projects_local_points(event_store):
    event_store.append(make_record(event_id="b", ts=200, old_ts=70, new_ts=65))
    event_store.append(make_record(event_id="a", ts=100, old_ts=80, new_ts=75, reason=None, payload={}))
    event_store.append(make_record(event_id="other", group_id="group-2", device_id="dev-9", ts=150))

    points = event_store.read_for_group("group-1", "dev-1")
    assert [p.ts for p in points] == [100.0, 200.0]
    assert all(p.source == PointSource.LOCAL for p in points)
    assert points[0].value == 75
    assert points[0].reason == "LOCAL"
    assert points[1].reason == "LOW_TRUST"


def test_read_for_group_matches_device_records(event_store):
    """Records of the submitting device count even when filed under another group."""
    event_store.append(make_record(event_id="x", group_id="legacy", device_id="dev-1", ts=100))

    assert len(event_store.read_for_group("group-1", "dev-1")) == 1
    assert event_store.read_for_group("group-1", "dev-2") == []


def test_pending_queue_items_uses_latest_stage(event_store):
    waiting = make_record(event_id="waiting")
    done = make_record(event_id="done")
    event_store.append(waiting.at_stage(Stage.QUEUED))
    event_store.append(done.at_stage(Stage.QUEUED))
    event_store.append(done.at_stage(Stage.POST_CHAIN, ledger={"txHash": "0x1"}))

    pending = event_store.pending_queue_items()
    assert [r.event_id for r in pending] == ["waiting"]
    assert pending[0].stage == Stage.QUEUED


def test_get_stats(event_store):
    record = make_record(flagged=False, stage=Stage.RECEIVED)
    event_store.append(record)
    event_store.append(record.at_stage(Stage.PRE_CHAIN, flagged=True))

    stats = event_store.get_stats()
    assert stats == {"records_total": 2, "events_total": 1, "flagged_records": 1}


def test_summary_shape(event_store):
    record = make_record(
        payload={"distA": 12.5, "distB": 13.0, "speed": 140, "controller": "B"},
        ledger={"txHash": "0xfeed"},
    )
    summary = record.summary()

    assert summary["rpm"] == 140
    assert summary["controller"] == "B"
    assert summary["txHash"] == "0xfeed"
    assert summary["timestamp"] == 1_700_000_000
    assert set(summary) >= {
        "timestamp", "eventId", "deviceId", "groupId", "stage", "distA", "distB",
        "trustA", "trustB", "controller", "rpm", "reason", "txHash", "systemDecision",
    }


def test_summary_reports_non_finite_readings_as_missing():
    record = make_record(payload={"distA": float("nan"), "distB": float("inf"), "rpm": 1200})
    summary = record.summary()

    assert summary["distA"] is None
    assert summary["distB"] is None
    assert summary["rpm"] == 1200
