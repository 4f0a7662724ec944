from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from common.config import get_settings

from . import __version__
from .endpoints import health_router, live_router, modules_router
from .pipeline import TelemetryPipeline, build_pipeline

logger = logging.getLogger(__name__)


def create_app(pipeline: Optional[TelemetryPipeline] = None) -> FastAPI:
    """Factory de la app. Sin pipeline se construye uno desde el entorno al arrancar."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = pipeline if pipeline is not None else build_pipeline(get_settings())
        app.state.pipeline = active
        active.broadcaster.attach_loop(asyncio.get_running_loop())
        # Receiver start may wait for the broker; keep it off the event loop
        await asyncio.get_running_loop().run_in_executor(None, active.start)
        try:
            yield
        finally:
            await asyncio.get_running_loop().run_in_executor(None, active.stop)
            active.broadcaster.detach_loop()

    app = FastAPI(title="Telemetry Ingest Service", version=__version__, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(modules_router)
    app.include_router(live_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    uvicorn.run(app, host="0.0.0.0", port=settings.api_port)


if __name__ == "__main__":
    run()
