"""
History Router

Read-only views for dashboards:
- Latest event records
- Latest flagged records
- Per-group threshold map
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..common.blocking import run_blocking
from ..dependencies.state import get_pipeline
from ..services.event_store import HISTORY_LIMIT
from ..services.pipeline import GatewayPipeline

router = APIRouter()


# ============================================
# SCHEMAS
# ============================================

class RecentEventsResponse(BaseModel):
    """Latest records, newest first."""
    count: int
    events: list[dict[str, Any]]


class ThresholdsResponse(BaseModel):
    """Threshold overrides per group plus the process default."""
    thresholds: dict[str, int]
    default: int


# ============================================
# ENDPOINTS
# ============================================

@router.get("/events/recent", response_model=RecentEventsResponse)
async def recent_events(
    limit: int = Query(HISTORY_LIMIT, ge=1, le=HISTORY_LIMIT),
    pipeline: GatewayPipeline = Depends(get_pipeline),
):
    """Summaries of the latest records (every stage)."""
    records = await run_blocking(pipeline.event_store.recent, limit)
    events = [record.summary() for record in records]
    return RecentEventsResponse(count=len(events), events=events)


@router.get("/flagged-events", response_model=list[dict[str, Any]])
async def flagged_events(
    limit: int = Query(HISTORY_LIMIT, ge=1, le=HISTORY_LIMIT),
    pipeline: GatewayPipeline = Depends(get_pipeline),
):
    """Summaries of the latest flagged records."""
    records = await run_blocking(pipeline.event_store.recent_flagged, limit)
    return [record.summary() for record in records]


@router.get("/thresholds", response_model=ThresholdsResponse)
async def thresholds(pipeline: GatewayPipeline = Depends(get_pipeline)):
    return ThresholdsResponse(
        thresholds=pipeline.thresholds.snapshot(),
        default=pipeline.thresholds.default_threshold,
    )
