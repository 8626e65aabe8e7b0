"""
Fan-out Hub

One-to-many push of live updates to connected observers.

Every observer receives every topic. Delivery is best-effort: an observer
whose buffer is full misses the message, and observers that connect later
get no replay (they query the history endpoints instead).
"""

import asyncio
from typing import Any

from ..common.logging_setup import get_service_logger

logger = get_service_logger("gateway.fanout")

# Message types published by the gateway
TOPIC_TELEMETRY = "telemetry"
TOPIC_EVENT_UPDATE = "event_update"
TOPIC_FLAGGED_EVENT = "flaggedEvent"
TOPIC_SYSTEM_ALERT = "system_alert"
TOPIC_THRESHOLD_UPDATE = "threshold_update"


class FanoutHub:
    """Registry of observer queues."""

    def __init__(self, buffer_size: int = 256):
        self.buffer_size = buffer_size
        self._subscribers: set[asyncio.Queue] = set()
        self.published_count = 0
        self.dropped_count = 0

    def subscribe(self) -> asyncio.Queue:
        """Register a new observer and return its message queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        self._subscribers.add(queue)
        logger.info(f"Observer connected ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """Remove an observer (no-op if unknown)."""
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            logger.info(f"Observer disconnected ({len(self._subscribers)} total)")

    @property
    def observer_count(self) -> int:
        return len(self._subscribers)

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver a message to every connected observer.

        Args:
            topic: Message type
            payload: JSON-serializable message body

        Returns:
            Number of observers the message was queued for
        """
        message = {"type": topic, "data": payload}
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                self.dropped_count += 1
                logger.debug(f"Observer buffer full, dropped {topic}")

        self.published_count += 1
        return delivered
