"""
Submission Schema

The telemetry submission accepted at POST /data, validated once at the
boundary. Every fallback rule for optional fields lives here:

- deviceId        -> "unknown"
- groupId         -> deviceId, else "group-1"
- trustA / trustB -> 100 (neutral)
- rpm             -> speed
- ts              -> timestamp, else now (milliseconds are normalized)
- oldTS           -> oldTrustA, else trustA
- newTS           -> newTrustA, else trustB

Unknown fields are allowed and kept in the raw payload.
"""

import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.models import NEUTRAL_TRUST
from .common.timestamp import normalize_unix_seconds

DEFAULT_GROUP_ID = "group-1"
DEFAULT_DEVICE_ID = "unknown"

TrustValue = Optional[float]


class TelemetrySubmission(BaseModel):
    """One reading submitted by a sensor device."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event_id: Optional[str] = Field(None, alias="eventId")
    device_id: Optional[str] = Field(None, alias="deviceId")
    group_id: Optional[str] = Field(None, alias="groupId")

    trust_a: TrustValue = Field(None, alias="trustA", ge=0, le=100)
    trust_b: TrustValue = Field(None, alias="trustB", ge=0, le=100)
    dist_a: Optional[float] = Field(None, alias="distA")
    dist_b: Optional[float] = Field(None, alias="distB")
    rpm: Optional[float] = None
    speed: Optional[float] = None
    reason: Optional[str] = None
    controller: Optional[str] = None

    ts: Optional[float] = Field(None, ge=0)
    timestamp: Optional[float] = Field(None, ge=0)

    old_ts: TrustValue = Field(None, alias="oldTS")
    new_ts: TrustValue = Field(None, alias="newTS")
    old_trust_a: TrustValue = Field(None, alias="oldTrustA")
    new_trust_a: TrustValue = Field(None, alias="newTrustA")

    @field_validator("event_id", "device_id", "group_id", "reason", "controller", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        """Devices sometimes send numeric ids."""
        if value is None or isinstance(value, str):
            return value or None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    # ============================================
    # RESOLVED VALUES
    # ============================================

    @property
    def resolved_device_id(self) -> str:
        return self.device_id or DEFAULT_DEVICE_ID

    @property
    def resolved_group_id(self) -> str:
        return self.group_id or self.device_id or DEFAULT_GROUP_ID

    @property
    def resolved_trust_a(self) -> float:
        return self.trust_a if self.trust_a is not None else NEUTRAL_TRUST

    @property
    def resolved_trust_b(self) -> float:
        return self.trust_b if self.trust_b is not None else NEUTRAL_TRUST

    @property
    def resolved_old_ts(self) -> float:
        for value in (self.old_ts, self.old_trust_a):
            if value is not None:
                return value
        return self.resolved_trust_a

    @property
    def resolved_new_ts(self) -> float:
        for value in (self.new_ts, self.new_trust_a):
            if value is not None:
                return value
        return self.resolved_trust_b

    @property
    def resolved_speed(self) -> Optional[float]:
        return self.rpm if self.rpm is not None else self.speed

    def resolved_unix_ts(self, now: Optional[float] = None) -> int:
        """Submission time in unix seconds."""
        raw = self.ts if self.ts is not None else self.timestamp
        if raw is None:
            raw = now if now is not None else time.time()
        return normalize_unix_seconds(raw)
