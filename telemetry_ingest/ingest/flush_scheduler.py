"""Thread de flush periódico para un buffer de ingesta.

Cada buffer tiene su propio flusher. El flush se dispara:
- por tiempo (cada `interval_seconds`)
- por tamaño: el buffer llama a `request_flush()` al alcanzar su umbral

Los flushes de un mismo flusher nunca se solapan (flush lock).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicFlusher:
    """Ejecuta `flush_fn` en un thread propio, por timer o a demanda."""

    def __init__(self, name: str, flush_fn: Callable[[], int], interval_seconds: float):
        """Inicializa el flusher.

        Args:
            name: Nombre para logs y métricas
            flush_fn: Función de flush; devuelve cuántos items persistió
            interval_seconds: Intervalo del flush periódico
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self._flush_fn = flush_fn
        self._interval = interval_seconds

        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._flush_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.flush_count = 0
        self.last_flush_at: float = 0

    def start(self) -> None:
        """Inicia el thread de flush periódico."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._flush_loop, name=f"flush-{self.name}", daemon=True)
        self._thread.start()
        logger.info("[FLUSH] %s flusher started (interval=%.1fs)", self.name, self._interval)

    def stop(self, flush_remaining: bool = True) -> None:
        """Detiene el thread; por defecto hace un último flush."""
        self._stop_event.set()
        self._wake.set()

        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

        if flush_remaining:
            self.flush_now()

        logger.info("[FLUSH] %s flusher stopped after %d flush(es)", self.name, self.flush_count)

    def request_flush(self) -> None:
        """Despierta al thread de flush. No bloquea (seguro desde el callback MQTT)."""
        self._wake.set()

    def flush_now(self) -> int:
        """Flush síncrono en el thread actual (shutdown y tests)."""
        with self._flush_lock:
            try:
                count = self._flush_fn()
            except Exception as e:
                logger.exception("[FLUSH] %s flush failed: %s", self.name, e)
                return 0
            self.flush_count += 1
            self.last_flush_at = time.time()
            return count

    def _flush_loop(self) -> None:
        while not self._stop_event.is_set():
            self._wake.wait(timeout=self._interval)
            self._wake.clear()
            if self._stop_event.is_set():
                break
            self.flush_now()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
