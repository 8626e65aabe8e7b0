"""
TrustGate - Trust Telemetry Gateway

FastAPI application that provides:
- Authenticated telemetry ingestion with content hashing
- Local threshold flagging and trend-based trust decisions
- Sequential, retrying relay of flagged events to a ledger
- Live WebSocket updates and history views for dashboards

State lives under TRUSTGATE_DATA_DIR (SQLite event log, threshold map).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .common.config import GatewayConfig, Settings, get_settings, load_gateway_config_file
from .common.logging_setup import configure_logging, get_service_logger
from .routers import data, events, live
from .services.ledger import LedgerAdapter
from .services.pipeline import GatewayPipeline

VERSION = "1.0.0"

logger = get_service_logger("gateway")


def create_app(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerAdapter] = None,
    config: Optional[GatewayConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Process settings (defaults to environment)
        ledger: Ledger adapter override (defaults from settings)
        config: Analysis/queue tunables (defaults to settings.config_file)
        sleep: Sleep used by the write queue worker
    """
    settings = settings or get_settings()

    # ============================================
    # APPLICATION LIFESPAN
    # ============================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
        - Build the pipeline against data_dir
        - Re-queue events left queued by the previous run

        Shutdown:
        - Stop the queue worker and close the ledger client
        """
        configure_logging(settings.log_level, settings.log_format.lower() == "json")
        gateway_config = config or load_gateway_config_file(settings.config_file)

        pipeline = GatewayPipeline.build(settings, config=gateway_config, ledger=ledger, sleep=sleep)
        await pipeline.start()
        app.state.pipeline = pipeline

        logger.info(
            f"TrustGate {VERSION} started (data_dir={settings.data_dir}, "
            f"ledger={'on' if pipeline.ledger.configured else 'off'})"
        )
        if not settings.api_key:
            logger.warning("TRUSTGATE_API_KEY is not set: all submissions will be rejected")

        yield

        await pipeline.shutdown()
        app.state.pipeline = None
        logger.info("TrustGate stopped")

    # ============================================
    # CREATE APPLICATION
    # ============================================

    app = FastAPI(
        title="TrustGate",
        description="""
        Trust telemetry gateway.

        ## Features
        - **Data**: Authenticated sensor submissions (`x-api-key`)
        - **Events**: Recent and flagged event history, group thresholds
        - **Live**: WebSocket stream of telemetry, stage updates and alerts
        """,
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials="*" not in settings.origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(data.router, tags=["Data"])
    app.include_router(events.router, tags=["Events"])
    app.include_router(live.router, tags=["Live"])

    # ============================================
    # HEALTH ENDPOINTS
    # ============================================

    @app.get("/", tags=["Health"])
    async def root():
        """Basic service information."""
        return {
            "name": "TrustGate",
            "version": VERSION,
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Liveness plus queue, ledger and observer status."""
        pipeline = request.app.state.pipeline
        if pipeline is None:
            return {"status": "starting", "version": VERSION}
        return {"status": "healthy", "version": VERSION, **pipeline.get_status()}

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    uvicorn.run(
        "trustgate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
