"""Feed WebSocket de actualizaciones `mqtt:data` en vivo."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..pipeline import TelemetryPipeline
from .deps import get_ws_pipeline

router = APIRouter(tags=["live"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def live_feed(websocket: WebSocket, pipeline: TelemetryPipeline = Depends(get_ws_pipeline)):
    await websocket.accept()
    broadcaster = pipeline.broadcaster
    broadcaster.register(websocket)
    try:
        # Clients only listen; inbound frames are read to notice disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("[WS] Connection error: %s", e)
    finally:
        broadcaster.unregister(websocket)
