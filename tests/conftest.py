"""
Shared test fixtures

Fakes for the ledger and the queue's sleep so nothing touches the network
or waits on a real clock.
"""

import pytest

from trustgate.common.config import Settings
from trustgate.common.exceptions import LedgerSubmitError
from trustgate.common.models import EventRecord, Stage
from trustgate.common.timestamp import utc_now_iso
from trustgate.services.event_store import EventStore
from trustgate.services.fanout import FanoutHub
from trustgate.services.ledger import LedgerAdapter, LedgerReceipt
from trustgate.services.stages import StageRecorder

API_KEY = "test-key"


class FakeLedger(LedgerAdapter):
    """
    In-memory ledger.

    Args:
        history: Points returned by query_events
        fail_first: Number of submissions that fail before any succeed
    """

    def __init__(self, history=None, fail_first: int = 0):
        self.history = list(history or [])
        self.fail_first = fail_first
        self.submissions: list[dict] = []
        self.queries: list[tuple[str, int]] = []
        self.closed = False

    async def submit(self, group_id, old_ts, new_ts, reason, data_hash, ts):
        self.submissions.append({
            "groupId": group_id,
            "oldTS": old_ts,
            "newTS": new_ts,
            "reason": reason,
            "dataHash": data_hash,
            "ts": ts,
        })
        if self.fail_first > 0:
            self.fail_first -= 1
            raise LedgerSubmitError("relay unavailable", status_code=503)
        return LedgerReceipt(
            tx_hash=f"0xtx{len(self.submissions)}",
            data_hash=data_hash,
            confirmed=True,
        )

    async def query_events(self, group_id, from_ts):
        self.queries.append((group_id, from_ts))
        return [p for p in self.history if p.group_id == group_id]

    async def close(self):
        self.closed = True


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_record(
    event_id: str = "evt-1",
    group_id: str = "group-1",
    stage: Stage = Stage.PRE_CHAIN,
    flagged: bool = True,
    trust: float = 40.0,
    ts: int = 1_700_000_000,
    **changes,
) -> EventRecord:
    """Event record with sensible defaults for store and queue tests."""
    return EventRecord(
        event_id=event_id,
        device_id=changes.pop("device_id", "dev-1"),
        group_id=group_id,
        payload=changes.pop("payload", {"trustA": trust, "trustB": trust}),
        received_at=utc_now_iso(),
        stage=stage,
        trust_a=trust,
        trust_b=trust,
        old_ts=changes.pop("old_ts", trust),
        new_ts=changes.pop("new_ts", trust),
        ts=ts,
        reason=changes.pop("reason", "LOW_TRUST"),
        flagged=flagged,
        data_hash=changes.pop("data_hash", "0xabc"),
        **changes,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(api_key=API_KEY, data_dir=str(tmp_path), ledger_url="")


@pytest.fixture
def event_store(tmp_path):
    return EventStore(tmp_path / "events.db")


@pytest.fixture
def fanout():
    return FanoutHub()


@pytest.fixture
def recorder(event_store, fanout):
    return StageRecorder(event_store, fanout)


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
