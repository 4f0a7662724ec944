"""Buffers en memoria entre el callback MQTT y la persistencia.

Características:
- Thread-safe: el thread de red de paho hace push, el flusher hace drain
- drain() toma todo el contenido de forma atómica y deja el buffer vacío
- requeue_front() devuelve un lote fallido al frente, en su orden original
- Al alcanzar el umbral se despierta al flusher (nunca se escribe en BD
  desde el thread de red)
- Sin límite de tamaño: si la BD no responde el buffer crece; se avisa por
  log al cruzar la marca de 10x el umbral
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from ..metrics.pipeline_metrics import BUFFER_SIZE

logger = logging.getLogger(__name__)

T = TypeVar("T")

HIGH_WATER_FACTOR = 10


class IngestionBuffer(Generic[T]):
    """Cola FIFO protegida por lock con disparo por tamaño."""

    def __init__(
        self,
        name: str,
        flush_threshold: int,
        on_threshold: Optional[Callable[[], None]] = None,
    ):
        if flush_threshold <= 0:
            raise ValueError("flush_threshold must be positive")
        self.name = name
        self.flush_threshold = flush_threshold
        self._on_threshold = on_threshold
        self._items: List[T] = []
        self._lock = threading.Lock()
        self._above_high_water = False

        # Métricas
        self.total_pushed = 0
        self.total_requeued = 0

    def set_threshold_callback(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_threshold = callback

    def push(self, item: T) -> bool:
        """Agrega un item. Devuelve True si se alcanzó el umbral de flush."""
        with self._lock:
            self._items.append(item)
            self.total_pushed += 1
            size = len(self._items)
            crossed_high_water = self._check_high_water(size)

        BUFFER_SIZE.labels(buffer=self.name).set(size)
        if crossed_high_water:
            logger.warning(
                "[BUFFER] %s buffer holds %d items (threshold=%d) - store may be unavailable",
                self.name, size, self.flush_threshold,
            )

        reached = size >= self.flush_threshold
        if reached and self._on_threshold is not None:
            self._on_threshold()
        return reached

    def drain(self) -> List[T]:
        """Toma todo el contenido y deja el buffer vacío."""
        with self._lock:
            items, self._items = self._items, []
            self._check_high_water(0)
        BUFFER_SIZE.labels(buffer=self.name).set(0)
        return items

    def requeue_front(self, items: Iterable[T]) -> None:
        """Devuelve items al frente, antes de lo que llegó durante el flush."""
        items = list(items)
        if not items:
            return
        with self._lock:
            self._items = items + self._items
            self.total_requeued += len(items)
            size = len(self._items)
            crossed_high_water = self._check_high_water(size)
        BUFFER_SIZE.labels(buffer=self.name).set(size)
        if crossed_high_water:
            logger.warning(
                "[BUFFER] %s buffer holds %d items after requeue (threshold=%d)",
                self.name, size, self.flush_threshold,
            )

    def snapshot(self) -> List[T]:
        with self._lock:
            return list(self._items)

    def _check_high_water(self, size: int) -> bool:
        # Llamar con el lock tomado. True sólo al cruzar la marca hacia arriba
        above = size >= self.flush_threshold * HIGH_WATER_FACTOR
        crossed = above and not self._above_high_water
        self._above_high_water = above
        return crossed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def stats(self) -> dict:
        return {
            "name": self.name,
            "size": len(self),
            "flush_threshold": self.flush_threshold,
            "total_pushed": self.total_pushed,
            "total_requeued": self.total_requeued,
        }
