"""
Stage Recorder

Appends a lifecycle record to the event store and publishes the matching
live update. Used by both the ingestion pipeline and the write queue so
every stage transition is visible to observers.
"""

from typing import Any

from ..common.blocking import run_blocking
from ..common.logging_setup import get_service_logger
from ..common.models import EventRecord, Stage
from .event_store import EventStore
from .fanout import TOPIC_EVENT_UPDATE, FanoutHub

logger = get_service_logger("gateway.stages")


class StageRecorder:
    """Persist-then-publish for stage records."""

    def __init__(self, event_store: EventStore, fanout: FanoutHub):
        self.event_store = event_store
        self.fanout = fanout

    async def record(
        self,
        record: EventRecord,
        publish_stage: str | None = None,
    ) -> bool:
        """
        Append a stage record and publish it as an event_update.

        Args:
            record: Record to append (already at its stage)
            publish_stage: Stage label for observers when it differs from
                           the stored one (the queue publishes "final")

        Returns:
            True if the record was persisted. The update is published
            either way so observers still see the transition.
        """
        stored = await run_blocking(self.event_store.append, record)
        if not stored:
            logger.warning(f"Stage {record.stage.value} of {record.event_id} was not persisted")

        update = record.to_dict()
        if publish_stage:
            update["stage"] = publish_stage
        self.fanout.publish(TOPIC_EVENT_UPDATE, update)
        return stored

    async def advance(self, record: EventRecord, stage: Stage, **changes: Any) -> EventRecord:
        """Append `record` at a later stage and return the new record."""
        next_record = record.at_stage(stage, **changes)
        await self.record(next_record)
        return next_record
