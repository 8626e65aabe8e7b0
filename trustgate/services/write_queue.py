"""
Durable Write Queue

Relays flagged events to the ledger, one submission at a time.

Item lifecycle:
    queued -> submitting -> confirmed
                         -> retry-wait -> submitting ...
                         -> failed (after max_attempts)

Robustness Guarantees:
1. Strict FIFO, exactly one ledger submission in flight per process
2. A `queued` record is persisted before the item enters the queue, so
   items in flight during a restart are found again by recover()
3. Failed items go back to the tail with a fresh `queued` record carrying
   the attempt count, and the worker waits backoff_base_ms * 2**attempts
   before continuing. A restart resumes the retry budget where it stopped
4. After max_attempts failures a `post-chain-failed` record is persisted
   and published; the item is dropped
5. Waits suspend only the worker task, never ingestion
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..common.config import QueueSettings
from ..common.exceptions import QueueFullError
from ..common.logging_setup import get_service_logger
from ..common.models import EventRecord, Stage
from .fanout import TOPIC_FLAGGED_EVENT, FanoutHub
from .ledger import LedgerAdapter
from .stages import StageRecorder

logger = get_service_logger("gateway.queue")


class ItemState(str, Enum):
    """Submission state of a queue item"""
    QUEUED = "queued"
    SUBMITTING = "submitting"
    RETRY_WAIT = "retry-wait"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class QueueItem:
    """A flagged event waiting for ledger submission."""
    record: EventRecord
    attempts: int = 0
    state: ItemState = ItemState.QUEUED

    @property
    def event_id(self) -> str:
        return self.record.event_id


class WriteQueue:
    """
    Sequential ledger writer.

    The worker task exists only while there is work; it exits when the
    queue empties and the next enqueue starts a new one.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        recorder: StageRecorder,
        fanout: FanoutHub,
        settings: Optional[QueueSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the write queue.

        Args:
            ledger: Ledger adapter used for submissions
            recorder: Stage recorder for queued/post-chain records
            fanout: Hub for flagged-event summaries
            settings: Retry/backoff policy
            sleep: Awaitable sleep (tests inject a recorder)
        """
        self.ledger = ledger
        self.recorder = recorder
        self.fanout = fanout
        self.settings = settings or QueueSettings()
        self._sleep = sleep

        self._pending: deque[QueueItem] = deque()
        self._worker: asyncio.Task | None = None

        # Observability
        self.confirmed_count = 0
        self.unconfirmed_count = 0
        self.failed_count = 0
        self.retry_count = 0
        self.last_error: str | None = None

    @property
    def depth(self) -> int:
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before the retry following `attempts` failures."""
        return self.settings.backoff_base_ms * (2 ** attempts) / 1000.0

    # ============================================
    # ENQUEUE
    # ============================================

    async def enqueue(self, record: EventRecord) -> QueueItem:
        """
        Persist a `queued` marker and add the event to the tail.

        Raises:
            QueueFullError: If max_pending items are already waiting
        """
        if len(self._pending) >= self.settings.max_pending:
            raise QueueFullError(self.settings.max_pending)

        item = QueueItem(record=record.at_stage(Stage.QUEUED))
        await self.recorder.record(item.record)

        self._pending.append(item)
        logger.info(
            f"Queued {item.event_id} for ledger logging (depth {len(self._pending)})",
            extra={"event_id": item.event_id, "depth": len(self._pending)},
        )
        self._ensure_worker()
        return item

    def recover(self, records: list[EventRecord]) -> int:
        """
        Re-queue events whose last persisted stage is `queued`.

        Their queued marker already exists, so nothing new is written.
        The attempts it records count against max_attempts.

        Returns:
            Number of items recovered
        """
        for record in records:
            self._pending.append(QueueItem(record=record, attempts=record.attempts))

        if records:
            logger.info(f"Recovered {len(records)} queued events from the event log")
            self._ensure_worker()
        return len(records)

    def _ensure_worker(self) -> None:
        """Start the worker if nothing is draining the queue."""
        if not self.is_draining:
            self._worker = asyncio.create_task(self._drain(), name="write-queue-worker")

    # ============================================
    # WORKER
    # ============================================

    async def _drain(self) -> None:
        """Process items until the queue is empty."""
        logger.debug("Write queue worker started")
        try:
            while self._pending:
                item = self._pending.popleft()
                await self._process(item)
        finally:
            self._worker = None
            logger.debug("Write queue worker idle")

    async def _process(self, item: QueueItem) -> None:
        """Submit one item and record the outcome."""
        record = item.record
        item.state = ItemState.SUBMITTING
        logger.info(
            f"Submitting {item.event_id} (attempt {item.attempts + 1}/{self.settings.max_attempts})",
            extra={"event_id": item.event_id, "attempt": item.attempts + 1},
        )

        try:
            receipt = await self.ledger.submit(
                record.group_id,
                record.old_ts,
                record.new_ts,
                record.reason or "LOW_TRUST",
                record.data_hash,
                record.ts or 0,
            )
        except Exception as e:
            await self._handle_failure(item, e)
            return

        item.state = ItemState.CONFIRMED
        if receipt.confirmed:
            self.confirmed_count += 1
        else:
            self.unconfirmed_count += 1

        post = record.at_stage(Stage.POST_CHAIN, ledger=receipt.to_dict(), attempts=item.attempts, error=None)
        await self.recorder.record(post, publish_stage="final")

        if post.flagged:
            self.fanout.publish(TOPIC_FLAGGED_EVENT, post.summary())

        logger.info(
            f"Processed {item.event_id}: {'confirmed ' + str(receipt.tx_hash) if receipt.confirmed else receipt.error}",
            extra={"event_id": item.event_id, "tx_hash": receipt.tx_hash},
        )

        # Pace submissions to the ledger endpoint
        await self._sleep(self.settings.post_success_delay_ms / 1000.0)

    async def _handle_failure(self, item: QueueItem, error: Exception) -> None:
        """Re-queue with backoff, or give up after max_attempts."""
        item.attempts += 1
        detail = str(error) or error.__class__.__name__
        self.last_error = detail

        if item.attempts < self.settings.max_attempts:
            delay = self.backoff_delay(item.attempts)
            item.state = ItemState.RETRY_WAIT
            self.retry_count += 1
            logger.warning(
                f"Submission of {item.event_id} failed ({detail}); retrying in {delay:.1f}s "
                f"(attempt {item.attempts}/{self.settings.max_attempts})",
                extra={"event_id": item.event_id, "attempt": item.attempts},
            )
            item.record = item.record.at_stage(Stage.QUEUED, error=detail, attempts=item.attempts)
            await self.recorder.record(item.record)
            self._pending.append(item)
            await self._sleep(delay)
            return

        item.state = ItemState.FAILED
        self.failed_count += 1
        logger.error(
            f"Giving up on {item.event_id} after {item.attempts} attempts: {detail}",
            extra={"event_id": item.event_id, "attempt": item.attempts},
        )
        failed = item.record.at_stage(Stage.POST_CHAIN_FAILED, error=detail, attempts=item.attempts)
        await self.recorder.record(failed)

    # ============================================
    # LIFECYCLE
    # ============================================

    async def join(self) -> None:
        """Wait until the queue is empty and the worker is idle."""
        while self._worker is not None:
            await asyncio.wait({self._worker})

    async def stop(self) -> None:
        """
        Cancel the worker.

        Unfinished items keep their `queued` record and are recovered on
        the next start.
        """
        worker = self._worker
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        logger.info(f"Write queue stopped ({len(self._pending)} items left queued)")

    def get_status(self) -> dict:
        """Queue status for the health endpoint."""
        return {
            "depth": len(self._pending),
            "draining": self.is_draining,
            "confirmed": self.confirmed_count,
            "unconfirmed": self.unconfirmed_count,
            "failed": self.failed_count,
            "retries": self.retry_count,
            "last_error": self.last_error,
        }
