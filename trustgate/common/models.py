"""
Core Records

Event lifecycle records and trend points shared by the store, the
analysis engine, the ledger adapter and the write queue.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .timestamp import iso_to_unix_seconds, utc_now_iso

# Neutral midpoint used when a trust value is missing
NEUTRAL_TRUST = 100.0


class Stage(str, Enum):
    """Lifecycle stage of an event record"""
    RECEIVED = "received"
    SYSTEM_VALIDATION = "system-validation"
    SYSTEM_VALIDATION_ERROR = "system-validation-error"
    PRE_CHAIN = "pre-chain"
    QUEUED = "queued"
    POST_CHAIN = "post-chain"
    POST_CHAIN_FAILED = "post-chain-failed"


class PointSource(str, Enum):
    """Where a trend point came from"""
    LOCAL = "local"
    ONCHAIN = "onchain"


@dataclass(frozen=True)
class EventRecord:
    """
    One event at one lifecycle stage.

    Records are immutable; progress is recorded by appending a copy with a
    later stage (see `at_stage`).
    """
    event_id: str
    device_id: str
    group_id: str
    payload: dict[str, Any]
    received_at: str
    stage: Stage
    data_hash: str | None = None
    trust_a: float = NEUTRAL_TRUST
    trust_b: float = NEUTRAL_TRUST
    old_ts: float = NEUTRAL_TRUST
    new_ts: float = NEUTRAL_TRUST
    ts: int | None = None
    reason: str | None = None
    local_flagged: bool = False
    flagged: bool = False
    system_decision: dict[str, Any] | None = None
    ledger: dict[str, Any] | None = None
    error: str | None = None
    attempts: int = 0
    recorded_at: str = field(default_factory=utc_now_iso)
    # Storage row id (set when read back)
    id: int | None = None

    def at_stage(self, stage: Stage, **changes: Any) -> "EventRecord":
        """Return a new record for a later stage."""
        return replace(self, stage=stage, recorded_at=utc_now_iso(), id=None, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Wire / storage representation (camelCase)."""
        return {
            "eventId": self.event_id,
            "deviceId": self.device_id,
            "groupId": self.group_id,
            "payload": self.payload,
            "dataHash": self.data_hash,
            "receivedAt": self.received_at,
            "recordedAt": self.recorded_at,
            "stage": self.stage.value,
            "trustA": self.trust_a,
            "trustB": self.trust_b,
            "oldTS": self.old_ts,
            "newTS": self.new_ts,
            "ts": self.ts,
            "reason": self.reason,
            "localFlagged": self.local_flagged,
            "flagged": self.flagged,
            "systemDecision": self.system_decision,
            "ledger": self.ledger,
            "error": self.error,
            "attempts": self.attempts,
        }

    def summary(self) -> dict[str, Any]:
        """
        Dashboard summary shape, used for flagged-event pushes and the
        history endpoints.
        """
        payload = self.payload or {}
        ledger = self.ledger or {}
        rpm = payload.get("rpm")
        if rpm is None:
            rpm = payload.get("speed")
        timestamp = self.ts if self.ts is not None else iso_to_unix_seconds(self.received_at)
        return {
            "timestamp": timestamp,
            "eventId": self.event_id,
            "deviceId": self.device_id,
            "groupId": self.group_id,
            "stage": self.stage.value,
            "distA": _finite(payload.get("distA")),
            "distB": _finite(payload.get("distB")),
            "trustA": self.trust_a,
            "trustB": self.trust_b,
            "controller": payload.get("controller") or ("A" if self.trust_a >= self.trust_b else "B"),
            "rpm": _finite(rpm),
            "reason": self.reason or payload.get("reason"),
            "flagged": self.flagged,
            "txHash": ledger.get("txHash"),
            "systemDecision": self.system_decision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], row_id: int | None = None) -> "EventRecord":
        """Rebuild a record from its stored representation."""
        return cls(
            id=row_id,
            event_id=data["eventId"],
            device_id=data.get("deviceId") or "unknown",
            group_id=data.get("groupId") or "",
            payload=data.get("payload") or {},
            data_hash=data.get("dataHash"),
            received_at=data["receivedAt"],
            recorded_at=data.get("recordedAt") or data["receivedAt"],
            stage=Stage(data["stage"]),
            trust_a=_as_float(data.get("trustA")),
            trust_b=_as_float(data.get("trustB")),
            old_ts=_as_float(data.get("oldTS")),
            new_ts=_as_float(data.get("newTS")),
            ts=data.get("ts"),
            reason=data.get("reason"),
            local_flagged=bool(data.get("localFlagged", False)),
            flagged=bool(data.get("flagged", False)),
            system_decision=data.get("systemDecision"),
            ledger=data.get("ledger"),
            error=data.get("error"),
            attempts=int(data.get("attempts") or 0),
        )


@dataclass(frozen=True)
class TrendPoint:
    """One historical trust observation for a group"""
    group_id: str
    ts: float
    source: PointSource
    old_ts: float | None = None
    new_ts: float | None = None
    reason: str | None = None
    tx_hash: str | None = None

    @property
    def value(self) -> float | None:
        """Trust value used for analysis: newTS, else oldTS."""
        return self.new_ts if self.new_ts is not None else self.old_ts


def _as_float(value: Any) -> float:
    if value is None:
        return NEUTRAL_TRUST
    try:
        return float(value)
    except (TypeError, ValueError):
        return NEUTRAL_TRUST


def _finite(value: Any) -> Any:
    # NaN and infinity have no JSON form; reported as missing
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value
