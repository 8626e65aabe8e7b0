"""
Application State Dependencies

The pipeline and settings are built once in the application lifespan and
stored on `app.state`; routers reach them through these dependencies.
"""

from fastapi import HTTPException, Request, WebSocket, status

from ..common.config import Settings
from ..services.pipeline import GatewayPipeline


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> GatewayPipeline:
    """Pipeline of the running application."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway is starting up",
        )
    return pipeline


def get_ws_pipeline(websocket: WebSocket) -> GatewayPipeline:
    return websocket.app.state.pipeline
