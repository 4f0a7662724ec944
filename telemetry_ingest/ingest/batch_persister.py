"""Persistencia por lotes de los buffers de ingesta.

Mediciones:
    El lote completo se escribe con un único upsert. Si falla, el lote vuelve
    al frente del buffer en su orden original y se reintenta en el próximo
    flush (sin límite de reintentos ni DLQ).

Actualizaciones de estado:
    Se aplican una a una, en orden de llegada. Un error en un item se loguea
    y el resto del lote continúa; el item fallido no se reintenta.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..core.domain.measurement import Measurement, MeasurementKey
from ..core.domain.repository import SensorConfigRow, TelemetryRepository
from ..core.domain.sensor_keys import is_composite, split_sensor_key
from ..core.domain.status_updates import (
    HardwarePayload,
    SensorsConfigPayload,
    SensorsStatusPayload,
    StatusUpdate,
    SystemConfigPayload,
    SystemPayload,
)
from ..metrics.pipeline_metrics import FLUSH_TOTAL, ITEMS_PERSISTED
from ..registry.manifest_registry import ManifestRegistry
from .buffers import IngestionBuffer

logger = logging.getLogger(__name__)


def dedupe_measurements(batch: Sequence[Measurement]) -> List[Measurement]:
    """Colapsa mediciones con la misma clave dentro de un lote (gana la última).

    Un mismo INSERT .. ON CONFLICT no puede tocar dos veces la misma fila.
    """
    latest: Dict[MeasurementKey, Measurement] = {}
    for m in batch:
        latest[m.key] = m
    return list(latest.values())


class BatchPersister:
    """Vacía los buffers de mediciones y de estado hacia el repositorio."""

    def __init__(
        self,
        repository: TelemetryRepository,
        registry: ManifestRegistry,
        measurement_buffer: IngestionBuffer[Measurement],
        status_buffer: IngestionBuffer[StatusUpdate],
    ):
        self._repository = repository
        self._registry = registry
        self._measurements = measurement_buffer
        self._status_updates = status_buffer

    # -- measurements ------------------------------------------------------

    def flush_measurements(self) -> int:
        batch = self._measurements.drain()
        if not batch:
            return 0

        rows = dedupe_measurements(batch)
        try:
            self._repository.upsert_measurements_batch(rows)
        except Exception as e:
            FLUSH_TOTAL.labels(buffer="measurements", result="error").inc()
            sample = ", ".join(f"{m.module_id}/{m.hardware_id}:{m.sensor_type}" for m in rows[:2])
            logger.error(
                "[DB] Failed to insert %d measurement(s), requeued for retry: %s (sample: %s)",
                len(batch), e, sample,
            )
            self._measurements.requeue_front(batch)
            return 0

        FLUSH_TOTAL.labels(buffer="measurements", result="ok").inc()
        ITEMS_PERSISTED.labels(buffer="measurements").inc(len(rows))
        if len(rows) != len(batch):
            logger.debug("[DB] Collapsed %d duplicate measurement(s)", len(batch) - len(rows))
        self._log_measurement_summary(rows)
        return len(rows)

    def _log_measurement_summary(self, rows: Sequence[Measurement]) -> None:
        by_module: Dict[str, List[str]] = defaultdict(list)
        for m in rows:
            by_module[m.module_id].append(f"{m.hardware_id}:{m.sensor_type}={m.value:g}")
        for module_id, readings in by_module.items():
            logger.info("[DB] Inserted %d measurement(s) for %s: %s", len(readings), module_id, ", ".join(readings))

    # -- status updates ----------------------------------------------------

    def flush_status_updates(self) -> int:
        batch = self._status_updates.drain()
        if not batch:
            return 0

        applied = 0
        for update in batch:
            try:
                self.apply_status_update(update)
                applied += 1
            except Exception as e:
                logger.error(
                    "[DB] Failed to apply %s update for %s: %s",
                    update.type.value, update.module_id, e,
                )

        failed = len(batch) - applied
        FLUSH_TOTAL.labels(buffer="status", result="error" if failed else "ok").inc()
        ITEMS_PERSISTED.labels(buffer="status").inc(applied)
        logger.debug("[DB] Status flush: %d applied, %d failed", applied, failed)
        return applied

    def apply_status_update(self, update: StatusUpdate) -> None:
        module_id = update.module_id
        data = update.data
        at = update.received_at

        if isinstance(data, SystemPayload):
            self._repository.upsert_system_status(module_id, data, at)

        elif isinstance(data, SystemConfigPayload):
            self._repository.upsert_system_config(module_id, data, data.booted_at(at), at)

        elif isinstance(data, SensorsStatusPayload):
            module_type: Optional[str] = None
            if any(is_composite(key) for key in data.root):
                module_type = self._repository.get_module_type(module_id)
            for sensor_key, entry in data.root.items():
                self._check_sensor_prefix(module_id, module_type, sensor_key)
                self._repository.upsert_sensor_status(module_id, sensor_key, entry.status, entry.value, at)

        elif isinstance(data, SensorsConfigPayload):
            self._apply_sensor_config(module_id, data, at)

        elif isinstance(data, HardwarePayload):
            self._repository.upsert_hardware(module_id, data.chip, at)

        else:
            raise TypeError(f"unsupported {update.type.value} payload: {type(data).__name__}")

    def _apply_sensor_config(self, module_id: str, data: SensorsConfigPayload, at: datetime) -> None:
        """Claves compuestas o canónicas se guardan tal cual.

        Una clave de hardware (`scd41`) trae un único intervalo para todos sus
        sensores, como el config colapsado que publica este servicio. Sólo
        completa filas compuestas ya existentes que no tengan intervalo o
        modelo; nunca crea filas ni pisa un intervalo guardado.
        """
        module_type = self._repository.get_module_type(module_id)
        existing: Optional[Dict[str, SensorConfigRow]] = None

        for sensor_key, entry in data.root.items():
            expanded = self._registry.expand_sensor_key(module_type, sensor_key)
            if expanded == [sensor_key]:
                self._repository.upsert_sensor_config(module_id, sensor_key, entry.interval, entry.model, at)
                continue

            if existing is None:
                existing = {
                    row.sensor_type: row
                    for row in self._repository.get_sensor_configs(module_id, enabled_only=False)
                }
            for key in expanded:
                row = existing.get(key)
                if row is None:
                    continue
                interval = entry.interval if row.interval_seconds is None else None
                model = entry.model if row.model is None else None
                if interval is None and model is None:
                    continue
                self._repository.upsert_sensor_config(module_id, key, interval, model, at)

    def _check_sensor_prefix(self, module_id: str, module_type: Optional[str], sensor_key: str) -> None:
        hardware_id, _ = split_sensor_key(sensor_key)
        if hardware_id is None or module_type is None:
            return
        if self._registry.get_manifest(module_type) is None:
            return
        if not self._registry.is_known_hardware(module_type, hardware_id):
            logger.debug(
                "[DB] %s reports sensor %s with hardware %s unknown to manifest %s",
                module_id, sensor_key, hardware_id, module_type,
            )
