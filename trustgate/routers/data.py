"""
Submission Router

Handles telemetry from sensor devices:
- API key check (before anything is read or written)
- Schema validation
- Hand-off to the gateway pipeline
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from ..common.logging_setup import get_service_logger
from ..dependencies.auth import require_api_key
from ..dependencies.state import get_pipeline
from ..schemas import TelemetrySubmission
from ..services.pipeline import GatewayPipeline

logger = get_service_logger("gateway.api")

router = APIRouter()


# ============================================
# ENDPOINTS
# ============================================

async def _read_payload(request: Request) -> dict[str, Any]:
    """Raw JSON object body, exactly as sent."""
    try:
        body = await request.json()
    except ValueError:
        raise RequestValidationError([{
            "type": "json_invalid",
            "loc": ("body",),
            "msg": "Body is not valid JSON",
            "input": None,
        }])

    if not isinstance(body, dict):
        raise RequestValidationError([{
            "type": "dict_type",
            "loc": ("body",),
            "msg": "Body must be a JSON object",
            "input": body,
        }])
    return body


@router.post(
    "/data",
    dependencies=[Depends(require_api_key)],
)
async def submit_data(
    request: Request,
    pipeline: GatewayPipeline = Depends(get_pipeline),
):
    """
    Accept one telemetry submission.

    Flagged events are queued for ledger logging; the response never
    waits for ledger confirmation.
    """
    payload = await _read_payload(request)

    try:
        submission = TelemetrySubmission.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))

    try:
        result = await pipeline.ingest(submission, payload)
    except Exception as e:
        logger.exception(f"Submission failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process submission: {e}",
        )

    return result.to_response()
