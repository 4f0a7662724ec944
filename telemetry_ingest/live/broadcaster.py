"""Reparto de actualizaciones en vivo a los clientes del dashboard.

`emit()` se llama desde el thread de red de MQTT. Nunca bloquea en I/O de
red: el envío se agenda en el loop asyncio de la API con
``run_coroutine_threadsafe`` y se olvida. Los envíos fallidos se loguean y
los clientes con el socket caído se descartan.

Si nadie escucha, no se emite nada.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import List, Optional, Protocol, Set

from fastapi import WebSocket

from ..metrics.pipeline_metrics import LIVE_EVENTS_EMITTED
from .payloads import LiveUpdate

logger = logging.getLogger(__name__)


class LiveSink(Protocol):
    """Suscriptor extra que recibe todas las actualizaciones (p. ej. Redis pub/sub)."""

    @property
    def is_connected(self) -> bool: ...

    def publish(self, update: LiveUpdate) -> bool: ...


class LiveBroadcaster:
    def __init__(self, sinks: Optional[List[LiveSink]] = None):
        self._clients: Set[WebSocket] = set()
        self._clients_lock = threading.Lock()
        self._sinks: List[LiveSink] = list(sinks or [])
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.emitted = 0
        self.skipped = 0
        self.failed = 0

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def detach_loop(self) -> None:
        self._loop = None

    def add_sink(self, sink: LiveSink) -> None:
        self._sinks.append(sink)

    # -- clients -----------------------------------------------------------

    def register(self, websocket: WebSocket) -> None:
        with self._clients_lock:
            self._clients.add(websocket)
            count = len(self._clients)
        logger.info("[WS] Client connected (%d total)", count)

    def unregister(self, websocket: WebSocket) -> None:
        with self._clients_lock:
            self._clients.discard(websocket)
            count = len(self._clients)
        logger.info("[WS] Client disconnected (%d total)", count)

    @property
    def client_count(self) -> int:
        with self._clients_lock:
            return len(self._clients)

    def has_subscribers(self) -> bool:
        return self.client_count > 0 or any(sink.is_connected for sink in self._sinks)

    # -- emission ----------------------------------------------------------

    def emit(self, update: LiveUpdate) -> bool:
        """Agenda el envío de `update`. Devuelve False si se omite."""
        if not self.has_subscribers():
            self.skipped += 1
            return False

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("[WS] No event loop attached, dropping live update for %s", update.topic)
            self.skipped += 1
            return False

        try:
            future = asyncio.run_coroutine_threadsafe(self._deliver(update), loop)
        except RuntimeError as e:
            logger.warning("[WS] Could not schedule live update: %s", e)
            self.failed += 1
            return False

        future.add_done_callback(self._on_delivered)
        self.emitted += 1
        LIVE_EVENTS_EMITTED.inc()
        return True

    def _on_delivered(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.failed += 1
            logger.warning("[WS] Live update delivery failed: %s", error)

    async def _deliver(self, update: LiveUpdate) -> None:
        message = update.to_message().decode("utf-8")

        with self._clients_lock:
            clients = list(self._clients)

        if clients:
            results = await asyncio.gather(
                *(client.send_text(message) for client in clients),
                return_exceptions=True,
            )
            for client, result in zip(clients, results):
                if isinstance(result, Exception):
                    logger.debug("[WS] Dropping client after send error: %s", result)
                    self.unregister(client)

        if self._sinks:
            loop = asyncio.get_running_loop()
            for sink in self._sinks:
                if sink.is_connected:
                    await loop.run_in_executor(None, sink.publish, update)

    @property
    def stats(self) -> dict:
        return {
            "clients": self.client_count,
            "sinks": len(self._sinks),
            "emitted": self.emitted,
            "skipped": self.skipped,
            "failed": self.failed,
        }
