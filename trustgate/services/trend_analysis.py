"""
Trend Analysis Engine

Decides whether a group's recent trust history looks unreliable.

Pipeline:
    ledger history (bounded lookback) ─┐
                                       ├─> merge / dedup / window ─> analyze ─> decide
    local event store history ─────────┘

Decision rules (first match wins):
1. drops >= 3 and samples >= 6   -> confirm_unreliable (recurring_drops)
2. instabilityFrac >= 0.4        -> flag_for_review (high_instability)
3. slope < -2                    -> adjust_threshold_lower (downward_trend)
4. otherwise                     -> no_action

Ledger read failures degrade to local-only history. Nothing raised inside
the engine escapes `decide`; it becomes a validation_error decision.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..common.blocking import run_blocking
from ..common.config import AnalysisSettings
from ..common.exceptions import AnalysisError, HistoryFetchError
from ..common.logging_setup import get_service_logger
from ..common.models import PointSource, TrendPoint
from .event_store import EventStore
from .ledger import LedgerAdapter

logger = get_service_logger("gateway.trend_analysis")


class DecisionAction(str, Enum):
    """Outcome of trend analysis"""
    NO_ACTION = "no_action"
    FLAG_FOR_REVIEW = "flag_for_review"
    CONFIRM_UNRELIABLE = "confirm_unreliable"
    ADJUST_THRESHOLD_LOWER = "adjust_threshold_lower"
    INSUFFICIENT_DATA = "insufficient_data"
    VALIDATION_ERROR = "validation_error"


@dataclass
class TrendAnalysis:
    """Statistics over a merged series"""
    ok: bool
    drops: int = 0
    instability_frac: float = 0.0
    slope: float = 0.0
    samples: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": self.ok,
            "drops": self.drops,
            "instabilityFrac": self.instability_frac,
            "slope": self.slope,
            "samples": self.samples,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class SystemDecision:
    """Decision attached to an event after analysis"""
    action: DecisionAction
    reason: str | None = None
    analysis: TrendAnalysis | None = None
    new_threshold: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action.value}
        if self.reason is not None:
            data["reason"] = self.reason
        if self.analysis is not None:
            data["analysis"] = self.analysis.to_dict()
        if self.new_threshold is not None:
            data["newThreshold"] = self.new_threshold
        if self.error is not None:
            data["error"] = self.error
        return data


def merge_series(
    ledger_points: list[TrendPoint],
    local_points: list[TrendPoint],
    window_events: int,
) -> list[TrendPoint]:
    """
    Merge ledger and local history into one ordered series.

    At most one point survives per (group_id, ts); a local point replaces a
    ledger point with the same key. Only the newest `window_events` points
    are kept.
    """
    combined = sorted([*ledger_points, *local_points], key=lambda p: p.ts)

    merged: list[TrendPoint] = []
    positions: dict[tuple[str, float], int] = {}
    for point in combined:
        key = (point.group_id, point.ts)
        pos = positions.get(key)
        if pos is None:
            positions[key] = len(merged)
            merged.append(point)
        elif point.source == PointSource.LOCAL:
            merged[pos] = point

    if len(merged) > window_events:
        return merged[len(merged) - window_events:]
    return merged


def ols_slope(xs: list[float], ys: list[float]) -> float:
    """Least-squares slope of ys against xs (0 when undefined)."""
    n = len(xs)
    if n < 2:
        return 0.0

    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)

    denom = n * sum_xx - sum_x * sum_x
    if denom == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom


class TrendAnalysisEngine:
    """
    Historical trend analysis for a group.

    Owns no mutable state; safe to share across concurrent submissions.
    """

    def __init__(
        self,
        event_store: EventStore,
        ledger: LedgerAdapter,
        settings: Optional[AnalysisSettings] = None,
        default_threshold: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.event_store = event_store
        self.ledger = ledger
        self.settings = settings or AnalysisSettings()
        self.default_threshold = default_threshold
        self._clock = clock

    # ============================================
    # SERIES
    # ============================================

    async def _fetch_ledger_points(self, group_id: str) -> list[TrendPoint]:
        """Ledger history for the lookback window ([] on any failure)."""
        if not self.ledger.configured:
            return []

        from_ts = int(self._clock()) - self.settings.history_lookback_s
        try:
            return await asyncio.wait_for(
                self.ledger.query_events(group_id, from_ts),
                timeout=self.settings.history_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Ledger history for {group_id} timed out, using local history only")
        except HistoryFetchError as e:
            logger.warning(f"Ledger history for {group_id} unavailable ({e}), using local history only")
        except Exception as e:
            logger.error(
                f"Unexpected ledger history error for {group_id}: {e}, using local history only",
                exc_info=True,
            )
        return []

    async def build_series(self, group_id: str, device_id: str | None = None) -> list[TrendPoint]:
        """
        Merged, deduplicated, windowed history for a group.

        Args:
            group_id: Group being analyzed
            device_id: Submitting device (its records count as local history)

        Returns:
            Up to window_events points, oldest first
        """
        ledger_points = await self._fetch_ledger_points(group_id)
        local_points = await run_blocking(self.event_store.read_for_group, group_id, device_id)
        return merge_series(ledger_points, local_points, self.settings.window_events)

    # ============================================
    # ANALYSIS
    # ============================================

    def analyze(self, series: list[TrendPoint]) -> TrendAnalysis:
        """
        Drop count, instability fraction and slope over consecutive pairs.

        Pairs where either side has no trust value are skipped.

        Raises:
            AnalysisError: If the series holds values that cannot be compared
        """
        if not series or len(series) < 2:
            return TrendAnalysis(
                ok=False,
                samples=len(series or []),
                reason="insufficient_samples",
            )

        drops = 0
        unstable = 0
        xs: list[float] = []
        ys: list[float] = []

        try:
            for i in range(1, len(series)):
                prev = series[i - 1].value
                cur = series[i].value
                if prev is None or cur is None:
                    continue

                delta = cur - prev
                if delta <= -self.settings.drop_delta:
                    drops += 1
                if abs(delta) >= self.settings.instability_delta:
                    unstable += 1
                xs.append(float(i))
                ys.append(float(cur))
        except (TypeError, ValueError) as e:
            raise AnalysisError(f"bad trust value in series: {e}") from e

        return TrendAnalysis(
            ok=True,
            drops=drops,
            instability_frac=unstable / max(1, len(xs)),
            slope=ols_slope(xs, ys),
            samples=len(series),
        )

    def evaluate(self, analysis: TrendAnalysis) -> SystemDecision:
        """Apply the decision rules to an analysis."""
        s = self.settings

        if not analysis.ok:
            return SystemDecision(action=DecisionAction.INSUFFICIENT_DATA, analysis=analysis)

        if analysis.drops >= s.drop_count_threshold and analysis.samples >= s.min_samples_for_confirm:
            return SystemDecision(
                action=DecisionAction.CONFIRM_UNRELIABLE,
                reason="recurring_drops",
                analysis=analysis,
            )

        if analysis.instability_frac >= s.instability_fraction:
            return SystemDecision(
                action=DecisionAction.FLAG_FOR_REVIEW,
                reason="high_instability",
                analysis=analysis,
            )

        if analysis.slope < s.slope_threshold:
            return SystemDecision(
                action=DecisionAction.ADJUST_THRESHOLD_LOWER,
                reason="downward_trend",
                analysis=analysis,
                new_threshold=max(s.threshold_floor, self.default_threshold - s.threshold_step),
            )

        return SystemDecision(action=DecisionAction.NO_ACTION, analysis=analysis)

    async def decide(self, group_id: str, device_id: str | None = None) -> SystemDecision:
        """
        Full analysis for a group. Never raises.

        Returns:
            SystemDecision (validation_error if anything went wrong)
        """
        try:
            series = await self.build_series(group_id, device_id)
            analysis = self.analyze(series)
            return self.evaluate(analysis)
        except AnalysisError as e:
            logger.error(f"Analysis failed for {group_id}: {e}")
            return SystemDecision(action=DecisionAction.VALIDATION_ERROR, error=str(e))
        except Exception as e:
            logger.error(f"Unexpected analysis error for {group_id}: {e}", exc_info=True)
            return SystemDecision(action=DecisionAction.VALIDATION_ERROR, error=str(e))
