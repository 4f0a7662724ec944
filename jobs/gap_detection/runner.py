"""Runner de detección de huecos.

Cada ejecución revisa la última hora de cada sensor habilitado y escribe una
fila ``DATA_GAP`` en system_logs por cada hueco que sigue abierto. Sólo lee
estado persistido: nunca toca los buffers de ingesta.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from telemetry_ingest.core.clock import Clock, utcnow
from telemetry_ingest.core.domain.repository import SystemLogEntry, TelemetryRepository
from telemetry_ingest.health.gaps import DataGap
from telemetry_ingest.health.service import DATA_GAP_CATEGORY, HealthService
from telemetry_ingest.metrics.pipeline_metrics import DATA_GAPS_LOGGED

from .config import GapJobConfig

logger = logging.getLogger(__name__)


def gap_log_entry(module_id: str, gap: DataGap, time) -> SystemLogEntry:
    return SystemLogEntry(
        category=DATA_GAP_CATEGORY,
        level="warn",
        msg=f"Data gap detected: {gap.sensor_type} ({gap.hardware_id})",
        time=time,
        source="SYSTEM",
        details={
            "moduleId": module_id,
            "sensorType": gap.sensor_type,
            "hardwareId": gap.hardware_id,
            "gapStart": gap.gap_start.isoformat(),
            "gapEnd": gap.gap_end.isoformat(),
            "gapDurationMinutes": gap.gap_duration_minutes,
            "expectedIntervalSeconds": gap.expected_interval_seconds,
        },
    )


class GapDetectionJob:
    def __init__(
        self,
        health_service: HealthService,
        repository: TelemetryRepository,
        config: Optional[GapJobConfig] = None,
        clock: Clock = utcnow,
    ):
        self._health = health_service
        self._repository = repository
        self._config = config or GapJobConfig()
        self._clock = clock

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def runs(self) -> int:
        return self._runs

    def start(self) -> None:
        """Arranca el hilo; la primera pasada se ejecuta de inmediato."""
        if self.is_running:
            logger.warning("[GAPS] Gap detection already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="gap-detection", daemon=True)
        self._thread.start()
        logger.info("[GAPS] Gap detection started (interval: %sm)", self._config.interval_minutes)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("[GAPS] Gap detection stopped")

    def _loop(self) -> None:
        interval_seconds = self._config.interval_minutes * 60
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(interval_seconds):
                break

    def detect_ongoing(self) -> Dict[str, List[DataGap]]:
        """``{module_id: [gap, ...]}`` con los huecos todavía abiertos."""
        by_module: Dict[str, List[DataGap]] = {}
        for module_id in self._repository.get_enabled_sensor_configs_by_module():
            module_gaps: List[DataGap] = []
            for config in self._repository.get_sensor_configs(module_id):
                gaps = self._health.detect_gaps(
                    module_id, config.sensor_type, self._config.lookback_hours, config=config,
                )
                now = self._clock()
                module_gaps.extend(g for g in gaps if g.is_ongoing(now))
            if module_gaps:
                by_module[module_id] = module_gaps
        return by_module

    def run_once(self) -> int:
        """Una pasada completa. Devuelve cuántos huecos se registraron."""
        self._runs += 1
        try:
            logger.debug("[GAPS] Running gap detection...")
            by_module = self.detect_ongoing()
        except Exception as e:
            logger.error("[GAPS] Error in gap detection: %s", e)
            return 0

        total = sum(len(gaps) for gaps in by_module.values())
        if total == 0:
            logger.debug("[GAPS] No ongoing data gaps detected")
            return 0

        logger.warning(
            "Detected %d ongoing data gaps across %d devices", total, len(by_module),
        )

        logged = 0
        for module_id, gaps in by_module.items():
            for gap in gaps:
                try:
                    self._repository.insert_system_log([gap_log_entry(module_id, gap, self._clock())])
                except Exception as e:
                    logger.error("[GAPS] Failed to log gap for %s: %s", module_id, e)
                    continue
                logged += 1
                DATA_GAPS_LOGGED.inc()
        return logged
