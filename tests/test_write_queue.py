"""
Test Durable Write Queue

Retry/backoff policy, FIFO order, worker lifecycle and restart recovery.
"""

import asyncio

import pytest

from conftest import FakeLedger, make_record
from trustgate.common.config import QueueSettings
from trustgate.common.exceptions import QueueFullError
from trustgate.common.models import Stage
from trustgate.services.fanout import TOPIC_EVENT_UPDATE, TOPIC_FLAGGED_EVENT
from trustgate.services.ledger import DisabledLedgerAdapter
from trustgate.services.write_queue import WriteQueue


def stages_of(event_store, event_id):
    return [r.stage for r in event_store.read_event(event_id)]


def drain_messages(queue):
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


def test_backoff_delay_doubles():
    queue = WriteQueue(FakeLedger(), recorder=None, fanout=None)
    assert [queue.backoff_delay(k) for k in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_successful_submission(event_store, recorder, fanout, recording_sleep):
    ledger = FakeLedger()
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)
    observer = fanout.subscribe()

    async def scenario():
        await queue.enqueue(make_record())
        await queue.join()

    asyncio.run(scenario())

    assert stages_of(event_store, "evt-1") == [Stage.QUEUED, Stage.POST_CHAIN]
    post = event_store.read_event("evt-1")[-1]
    assert post.ledger["txHash"] == "0xtx1"
    assert post.ledger["confirmed"] is True
    assert recording_sleep.delays == [0.5]
    assert ledger.submissions[0]["dataHash"] == "0xabc"

    messages = drain_messages(observer)
    final = [m for m in messages if m["type"] == TOPIC_EVENT_UPDATE and m["data"]["stage"] == "final"]
    flagged = [m for m in messages if m["type"] == TOPIC_FLAGGED_EVENT]
    assert len(final) == 1
    assert flagged[0]["data"]["txHash"] == "0xtx1"
    assert queue.get_status()["confirmed"] == 1


def test_gives_up_after_max_attempts(event_store, recorder, fanout, recording_sleep):
    """Four submissions, backoff 2s/4s/8s between them, then post-chain-failed."""
    ledger = FakeLedger(fail_first=100)
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)
    observer = fanout.subscribe()

    async def scenario():
        await queue.enqueue(make_record())
        await queue.join()

    asyncio.run(scenario())

    assert len(ledger.submissions) == 4
    assert recording_sleep.delays == [2.0, 4.0, 8.0]
    assert stages_of(event_store, "evt-1") == [Stage.QUEUED] * 4 + [Stage.POST_CHAIN_FAILED]
    assert [r.attempts for r in event_store.read_event("evt-1")] == [0, 1, 2, 3, 4]

    failed = event_store.read_event("evt-1")[-1]
    assert "relay unavailable" in failed.error
    assert failed.attempts == 4

    updates = [m["data"]["stage"] for m in drain_messages(observer) if m["type"] == TOPIC_EVENT_UPDATE]
    assert updates[-1] == Stage.POST_CHAIN_FAILED.value
    assert queue.get_status()["failed"] == 1
    assert not queue.is_draining


def test_failed_item_retries_from_tail(event_store, recorder, fanout, recording_sleep):
    ledger = FakeLedger(fail_first=1)
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)

    # Both items are waiting before the worker takes the first one
    waiting = [
        make_record(event_id="a", group_id="group-a", stage=Stage.QUEUED),
        make_record(event_id="b", group_id="group-b", stage=Stage.QUEUED),
    ]
    for record in waiting:
        event_store.append(record)

    async def scenario():
        queue.recover(waiting)
        await queue.join()

    asyncio.run(scenario())

    assert [s["groupId"] for s in ledger.submissions] == ["group-a", "group-b", "group-a"]
    assert recording_sleep.delays == [2.0, 0.5, 0.5]
    assert stages_of(event_store, "a")[-1] == Stage.POST_CHAIN
    assert stages_of(event_store, "b")[-1] == Stage.POST_CHAIN


def test_fifo_order(event_store, recorder, fanout, recording_sleep):
    ledger = FakeLedger()
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)

    async def scenario():
        for name in ("first", "second", "third"):
            await queue.enqueue(make_record(event_id=name, group_id=name))
        await queue.join()

    asyncio.run(scenario())
    assert [s["groupId"] for s in ledger.submissions] == ["first", "second", "third"]


def test_worker_restarts_after_idle(event_store, recorder, fanout, recording_sleep):
    ledger = FakeLedger()
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)

    async def scenario():
        await queue.enqueue(make_record(event_id="one"))
        await queue.join()
        assert not queue.is_draining
        await queue.enqueue(make_record(event_id="two"))
        await queue.join()

    asyncio.run(scenario())
    assert len(ledger.submissions) == 2
    assert queue.depth == 0


def test_disabled_ledger_completes_unconfirmed(event_store, recorder, fanout, recording_sleep):
    queue = WriteQueue(DisabledLedgerAdapter(), recorder, fanout, sleep=recording_sleep)

    async def scenario():
        await queue.enqueue(make_record())
        await queue.join()

    asyncio.run(scenario())

    post = event_store.read_event("evt-1")[-1]
    assert post.stage == Stage.POST_CHAIN
    assert post.ledger == {"txHash": None, "dataHash": "0xabc", "confirmed": False, "error": "ledger not configured"}
    assert queue.get_status()["unconfirmed"] == 1


def test_queue_full(event_store, recorder, fanout, recording_sleep):
    queue = WriteQueue(FakeLedger(), recorder, fanout, settings=QueueSettings(max_pending=1), sleep=recording_sleep)

    async def scenario():
        await queue.enqueue(make_record(event_id="one"))
        with pytest.raises(QueueFullError):
            await queue.enqueue(make_record(event_id="two"))
        await queue.join()

    asyncio.run(scenario())
    assert stages_of(event_store, "two") == []


def test_recover_resubmits_without_new_queued_marker(event_store, recorder, fanout, recording_sleep):
    event_store.append(make_record(event_id="left-over", stage=Stage.QUEUED))
    ledger = FakeLedger()
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)

    async def scenario():
        recovered = queue.recover(event_store.pending_queue_items())
        await queue.join()
        return recovered

    assert asyncio.run(scenario()) == 1
    assert len(ledger.submissions) == 1
    assert stages_of(event_store, "left-over") == [Stage.QUEUED, Stage.POST_CHAIN]
    assert event_store.pending_queue_items() == []


def test_stop_leaves_items_queued(event_store, recorder, fanout):
    blocked = asyncio.Event()

    async def never_wake(seconds):
        await blocked.wait()

    queue = WriteQueue(FakeLedger(fail_first=100), recorder, fanout, sleep=never_wake)

    async def scenario():
        await queue.enqueue(make_record())
        # Let the worker fail once and park in its backoff wait
        while not queue.get_status()["retries"]:
            await asyncio.sleep(0.01)
        await queue.stop()

    asyncio.run(scenario())
    assert [r.event_id for r in event_store.pending_queue_items()] == ["evt-1"]


def test_recovered_item_keeps_its_retry_budget(event_store, recorder, fanout, recording_sleep):
    """Three attempts made before a restart leave one more afterwards."""
    left_over = make_record(event_id="tired", stage=Stage.QUEUED, attempts=3, error="Ledger Submit Error: relay unavailable")
    event_store.append(left_over)
    ledger = FakeLedger(fail_first=100)
    queue = WriteQueue(ledger, recorder, fanout, sleep=recording_sleep)

    async def scenario():
        queue.recover(event_store.pending_queue_items())
        await queue.join()

    asyncio.run(scenario())

    assert len(ledger.submissions) == 1
    assert recording_sleep.delays == []
    failed = event_store.read_event("tired")[-1]
    assert failed.stage == Stage.POST_CHAIN_FAILED
    assert failed.attempts == 4


def test_success_after_retry_clears_error(event_store, recorder, fanout, recording_sleep):
    queue = WriteQueue(FakeLedger(fail_first=1), recorder, fanout, sleep=recording_sleep)

    async def scenario():
        await queue.enqueue(make_record())
        await queue.join()

    asyncio.run(scenario())

    retry, post = event_store.read_event("evt-1")[-2:]
    assert (retry.stage, retry.attempts) == (Stage.QUEUED, 1)
    assert "relay unavailable" in retry.error
    assert (post.stage, post.attempts, post.error) == (Stage.POST_CHAIN, 1, None)
