"""
Gateway Pipeline

Coordinates one submission from arrival to response:

    received ─> [publish telemetry] ─> trend analysis ─> system-validation
            ─> decision side effects ─> pre-chain ─> (respond | enqueue + respond)

Owns every piece of shared state (threshold map, write queue, fan-out hub)
so the whole flow can be built against a temporary directory and a fake
ledger in tests.

The `received` record and its live update always happen before analysis,
so observers see raw telemetry even when analysis is slow or fails.
Ledger confirmation is never awaited here.
"""

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from ..common.blocking import run_blocking
from ..common.config import GatewayConfig, Settings
from ..common.exceptions import IntegrityComputeError, QueueFullError, StorageError
from ..common.hashing import content_hash
from ..common.logging_setup import LogContext, get_service_logger, log_decision, log_system_alert
from ..common.models import EventRecord, Stage
from ..common.timestamp import utc_now, utc_now_iso
from ..schemas import TelemetrySubmission
from .event_store import EventStore
from .fanout import (
    TOPIC_SYSTEM_ALERT,
    TOPIC_TELEMETRY,
    TOPIC_THRESHOLD_UPDATE,
    FanoutHub,
)
from .ledger import LedgerAdapter, create_ledger_adapter
from .stages import StageRecorder
from .thresholds import ThresholdStore
from .trend_analysis import DecisionAction, SystemDecision, TrendAnalysisEngine
from .write_queue import WriteQueue

logger = get_service_logger("gateway.pipeline")

DEFAULT_FLAG_REASON = "LOW_TRUST"


@dataclass
class SubmissionResult:
    """What the submission endpoint answers."""
    event_id: str
    message: str
    data_hash: str | None
    flagged: bool
    decision: SystemDecision
    queued: bool = False

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "message": self.message,
            "hash": self.data_hash,
            "flagged": self.flagged,
            "systemDecision": self.decision.to_dict(),
        }
        if self.flagged:
            response["feedback"] = {
                "action": self.decision.action.value,
                "reason": self.decision.reason,
                "adjustThreshold": self.decision.new_threshold,
            }
        return response


def new_event_id() -> str:
    """Gateway-assigned event id (millisecond time plus random suffix)."""
    return f"evt-{int(utc_now().timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


def is_locally_flagged(trust_a: float, trust_b: float, threshold: float) -> bool:
    """Local threshold rule: either sensor below the group floor."""
    return trust_a < threshold or trust_b < threshold


class GatewayPipeline:
    """
    Ingestion and scoring coordinator.

    Submissions run concurrently; the only shared mutable state is the
    append-only event store, the threshold map and the write queue.
    """

    def __init__(
        self,
        event_store: EventStore,
        thresholds: ThresholdStore,
        ledger: LedgerAdapter,
        engine: TrendAnalysisEngine,
        queue: WriteQueue,
        recorder: StageRecorder,
        fanout: FanoutHub,
    ):
        self.event_store = event_store
        self.thresholds = thresholds
        self.ledger = ledger
        self.engine = engine
        self.queue = queue
        self.recorder = recorder
        self.fanout = fanout

    @classmethod
    def build(
        cls,
        settings: Settings,
        config: Optional[GatewayConfig] = None,
        ledger: Optional[LedgerAdapter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "GatewayPipeline":
        """
        Wire all services from settings.

        Args:
            settings: Process settings (paths, ledger, default threshold)
            config: Analysis/queue tunables
            ledger: Ledger adapter override (defaults from settings)
            sleep: Sleep used by the write queue
        """
        config = config or GatewayConfig()
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

        event_store = EventStore(settings.events_db_path)
        thresholds = ThresholdStore(settings.thresholds_path, settings.default_threshold)
        if ledger is None:
            ledger = create_ledger_adapter(
                settings.ledger_url,
                api_key=settings.ledger_api_key,
                timeout_s=settings.ledger_timeout_s,
            )
        fanout = FanoutHub()
        recorder = StageRecorder(event_store, fanout)
        engine = TrendAnalysisEngine(
            event_store,
            ledger,
            settings=config.analysis,
            default_threshold=settings.default_threshold,
        )
        queue = WriteQueue(ledger, recorder, fanout, settings=config.queue, sleep=sleep)

        return cls(event_store, thresholds, ledger, engine, queue, recorder, fanout)

    # ============================================
    # LIFECYCLE
    # ============================================

    async def start(self) -> None:
        """Recover events that were queued when the process last stopped."""
        with LogContext(phase="recovery"):
            pending = await run_blocking(self.event_store.pending_queue_items)
            recovered = self.queue.recover(pending)
        logger.info(f"Gateway pipeline started ({recovered} queued events recovered)")

    async def shutdown(self) -> None:
        """Stop the queue worker and release the ledger client."""
        await self.queue.stop()
        await self.ledger.close()
        logger.info("Gateway pipeline stopped")

    # ============================================
    # INGESTION
    # ============================================

    def _hash(self, raw_payload: dict[str, Any]) -> str | None:
        """Content hash, or None when integrity cannot be computed."""
        try:
            return content_hash(raw_payload)
        except IntegrityComputeError as e:
            logger.warning(f"Hash compute failed, integrity unverifiable: {e}")
            return None

    def _telemetry_snapshot(self, record: EventRecord, submission: TelemetrySubmission) -> dict[str, Any]:
        """Raw telemetry pushed to observers on every submission."""
        return {
            "timestamp": record.ts,
            "eventId": record.event_id,
            "deviceId": record.device_id,
            "groupId": record.group_id,
            "distA": submission.dist_a,
            "distB": submission.dist_b,
            "trustA": record.trust_a,
            "trustB": record.trust_b,
            "controller": submission.controller or ("A" if record.trust_a >= record.trust_b else "B"),
            "rpm": submission.resolved_speed,
            "hash": record.data_hash,
            "flagged": record.local_flagged,
        }

    async def _apply_decision(self, record: EventRecord, decision: SystemDecision, threshold: int) -> bool:
        """
        Side effects of a decision.

        Returns:
            True if the decision itself marks the event flagged
        """
        alert = {
            "deviceId": record.device_id,
            "groupId": record.group_id,
            "eventId": record.event_id,
            "decision": decision.to_dict(),
        }

        if decision.action == DecisionAction.CONFIRM_UNRELIABLE:
            log_system_alert(logger, record.device_id, record.group_id, decision.action.value, decision.reason)
            self.fanout.publish(TOPIC_SYSTEM_ALERT, alert)
            return True

        if decision.action == DecisionAction.ADJUST_THRESHOLD_LOWER:
            new_threshold = decision.new_threshold if decision.new_threshold is not None else threshold
            try:
                await run_blocking(self.thresholds.set, record.group_id, new_threshold)
            except StorageError as e:
                logger.error(f"Threshold for {record.group_id} not persisted: {e}")
            log_system_alert(logger, record.device_id, record.group_id, decision.action.value, decision.reason)
            self.fanout.publish(TOPIC_THRESHOLD_UPDATE, {
                "groupId": record.group_id,
                "newThreshold": new_threshold,
                "previousThreshold": threshold,
            })
            self.fanout.publish(TOPIC_SYSTEM_ALERT, alert)
            return False

        if decision.action == DecisionAction.FLAG_FOR_REVIEW:
            log_system_alert(logger, record.device_id, record.group_id, decision.action.value, decision.reason)
            self.fanout.publish(TOPIC_SYSTEM_ALERT, alert)

        return False

    async def ingest(self, submission: TelemetrySubmission, raw_payload: dict[str, Any]) -> SubmissionResult:
        """
        Run one authenticated submission through the pipeline.

        Args:
            submission: Validated submission
            raw_payload: The body exactly as received (hashed and stored)

        Returns:
            SubmissionResult for the HTTP response
        """
        event_id = submission.event_id or new_event_id()
        group_id = submission.resolved_group_id
        device_id = submission.resolved_device_id

        data_hash = self._hash(raw_payload)

        threshold = self.thresholds.get(group_id)
        trust_a = submission.resolved_trust_a
        trust_b = submission.resolved_trust_b
        local_flagged = is_locally_flagged(trust_a, trust_b, threshold)

        record = EventRecord(
            event_id=event_id,
            device_id=device_id,
            group_id=group_id,
            payload=raw_payload,
            data_hash=data_hash,
            received_at=utc_now_iso(),
            stage=Stage.RECEIVED,
            trust_a=trust_a,
            trust_b=trust_b,
            old_ts=submission.resolved_old_ts,
            new_ts=submission.resolved_new_ts,
            ts=submission.resolved_unix_ts(),
            reason=submission.reason,
            local_flagged=local_flagged,
        )

        # Raw telemetry goes out before analysis starts
        await self.recorder.record(record)
        self.fanout.publish(TOPIC_TELEMETRY, self._telemetry_snapshot(record, submission))

        decision = await self.engine.decide(group_id, device_id)
        log_decision(logger, event_id, group_id, decision.action.value, decision.reason)

        stage = (
            Stage.SYSTEM_VALIDATION_ERROR
            if decision.action == DecisionAction.VALIDATION_ERROR
            else Stage.SYSTEM_VALIDATION
        )
        record = await self.recorder.advance(record, stage, system_decision=decision.to_dict())

        decision_flagged = await self._apply_decision(record, decision, threshold)
        final_flagged = local_flagged or decision_flagged or record.flagged

        reason = submission.reason or decision.reason or DEFAULT_FLAG_REASON
        record = await self.recorder.advance(record, Stage.PRE_CHAIN, flagged=final_flagged, reason=reason)

        if not final_flagged:
            return SubmissionResult(
                event_id=event_id,
                message="Data received (not flagged)",
                data_hash=data_hash,
                flagged=False,
                decision=decision,
            )

        try:
            await self.queue.enqueue(record)
        except QueueFullError as e:
            logger.error(f"Could not queue {event_id}: {e}")
            await self.recorder.advance(record, Stage.POST_CHAIN_FAILED, error=e.message)
            return SubmissionResult(
                event_id=event_id,
                message="Flagged event recorded but not queued (write queue full)",
                data_hash=data_hash,
                flagged=True,
                decision=decision,
            )

        return SubmissionResult(
            event_id=event_id,
            message="Flagged event accepted and queued for on-chain logging",
            data_hash=data_hash,
            flagged=True,
            decision=decision,
            queued=True,
        )

    # ============================================
    # STATUS
    # ============================================

    def get_status(self) -> dict[str, Any]:
        """Pipeline status for the health endpoint."""
        return {
            "ledger_configured": self.ledger.configured,
            "observers": self.fanout.observer_count,
            "queue": self.queue.get_status(),
            "store": self.event_store.get_stats(),
        }
