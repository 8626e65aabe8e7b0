"""
Test Fan-out Hub
"""

from trustgate.services.fanout import TOPIC_SYSTEM_ALERT, TOPIC_TELEMETRY, FanoutHub


def test_every_observer_gets_every_message(fanout):
    first = fanout.subscribe()
    second = fanout.subscribe()

    delivered = fanout.publish(TOPIC_TELEMETRY, {"trustA": 55})

    assert delivered == 2
    for queue in (first, second):
        assert queue.get_nowait() == {"type": "telemetry", "data": {"trustA": 55}}


def test_full_observer_misses_message():
    hub = FanoutHub(buffer_size=1)
    slow = hub.subscribe()

    hub.publish(TOPIC_TELEMETRY, {"n": 1})
    hub.publish(TOPIC_SYSTEM_ALERT, {"n": 2})

    assert slow.qsize() == 1
    assert slow.get_nowait()["data"] == {"n": 1}
    assert hub.dropped_count == 1


def test_unsubscribed_observer_gets_nothing(fanout):
    queue = fanout.subscribe()
    fanout.unsubscribe(queue)
    fanout.unsubscribe(queue)

    assert fanout.publish(TOPIC_TELEMETRY, {}) == 0
    assert queue.empty()
    assert fanout.observer_count == 0


def test_no_replay_for_late_observers(fanout):
    fanout.publish(TOPIC_TELEMETRY, {"early": True})
    late = fanout.subscribe()
    assert late.empty()
