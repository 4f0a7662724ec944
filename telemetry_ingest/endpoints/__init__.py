"""Endpoints HTTP y WebSocket del servicio, organizados por función."""

from .health import router as health_router
from .live import router as live_router
from .modules import router as modules_router

__all__ = [
    "health_router",
    "live_router",
    "modules_router",
]
