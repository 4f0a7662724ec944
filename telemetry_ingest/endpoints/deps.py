from __future__ import annotations

from fastapi import Request, WebSocket

from ..pipeline import TelemetryPipeline


def get_pipeline(request: Request) -> TelemetryPipeline:
    return request.app.state.pipeline


def get_ws_pipeline(websocket: WebSocket) -> TelemetryPipeline:
    return websocket.app.state.pipeline
