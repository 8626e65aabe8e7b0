"""
Live Updates Router

WebSocket push of every gateway update to connected dashboards.

Message format:
    {"type": "<topic>", "data": {...}}

Topics: telemetry, event_update, flaggedEvent, system_alert,
threshold_update. Observers only send to keep the socket open; anything
they send is ignored.
"""

import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..common.logging_setup import get_service_logger
from ..dependencies.state import get_ws_pipeline
from ..services.pipeline import GatewayPipeline

logger = get_service_logger("gateway.live")

router = APIRouter()


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Send hub messages to the observer as they arrive."""
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume incoming frames until the observer goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def live_updates(websocket: WebSocket, pipeline: GatewayPipeline = Depends(get_ws_pipeline)):
    hub = pipeline.fanout

    # Subscribe before accepting so nothing published after the handshake is missed
    queue = hub.subscribe()
    sender = receiver = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(_forward(websocket, queue))
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Live connection closed with error: {error}")
    except WebSocketDisconnect:
        pass
    finally:
        for task in (sender, receiver):
            if task is not None and not task.done():
                task.cancel()
        hub.unsubscribe(queue)
