"""Salud de dispositivos calculada a partir del estado persistido.

Lee configs de sensores, filas de estado y timestamps de mediciones a través
del repositorio. Nunca toca los buffers de ingesta.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..core.clock import Clock, utcnow
from ..core.domain.repository import SensorConfigRow, SystemLogEntry, TelemetryRepository
from ..core.domain.sensor_keys import split_sensor_key
from .gaps import DataGap, average_uptime, find_gaps, sensor_uptime_percent
from .status import (
    ConnectionStatus,
    OverallStatus,
    SensorStatusView,
    build_sensor_statuses,
    classify_connection,
    overall_status,
)

logger = logging.getLogger(__name__)

DATA_GAP_CATEGORY = "DATA_GAP"


@dataclass
class SensorHealth:
    sensor_type: str
    hardware_id: Optional[str]
    status: ConnectionStatus
    last_measurement: Optional[datetime]
    time_since_last_ms: Optional[int]
    expected_interval_seconds: Optional[int]
    gap_count: int
    longest_gap_minutes: Optional[int]

    def to_dict(self) -> dict:
        return {
            "sensorType": self.sensor_type,
            "hardwareId": self.hardware_id,
            "status": self.status.value,
            "lastMeasurement": self.last_measurement.isoformat() if self.last_measurement else None,
            "timeSinceLastMeasurement": self.time_since_last_ms,
            "expectedIntervalSeconds": self.expected_interval_seconds,
            "gapCount": self.gap_count,
            "longestGapMinutes": self.longest_gap_minutes,
        }


@dataclass
class DeviceHealth:
    module_id: str
    overall_status: OverallStatus
    uptime_percent_24h: float
    last_update: datetime
    sensors: List[SensorHealth] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "moduleId": self.module_id,
            "overallStatus": self.overall_status.value,
            "uptimePercent24h": self.uptime_percent_24h,
            "sensors": [s.to_dict() for s in self.sensors],
            "lastUpdate": self.last_update.isoformat(),
        }


class HealthService:
    def __init__(self, repository: TelemetryRepository, clock: Clock = utcnow):
        self._repository = repository
        self._clock = clock

    # -- gaps --------------------------------------------------------------

    def detect_gaps(
        self,
        module_id: str,
        sensor_type: str,
        hours: float,
        config: Optional[SensorConfigRow] = None,
    ) -> List[DataGap]:
        if config is None:
            config = self._repository.get_sensor_config(module_id, sensor_type)
        if config is None or not config.interval_seconds:
            return []

        now = self._clock()
        hardware_id, measurement = split_sensor_key(sensor_type)
        timestamps = self._repository.get_measurement_timestamps_in_window(
            module_id, measurement, now - timedelta(hours=hours), hardware_id=hardware_id,
        )
        return find_gaps(
            timestamps,
            config.interval_seconds,
            now=now,
            hours=hours,
            sensor_type=sensor_type,
            hardware_id=hardware_id or config.model or "unknown",
        )

    def calculate_uptime_percent(self, module_id: str, hours: float = 24) -> float:
        configs = self._repository.get_sensor_configs(module_id)
        uptimes = []
        for config in configs:
            if not config.interval_seconds:
                uptimes.append(0.0)
                continue
            gaps = self.detect_gaps(module_id, config.sensor_type, hours, config=config)
            uptimes.append(sensor_uptime_percent(gaps, hours))
        return average_uptime(uptimes)

    # -- liveness ----------------------------------------------------------

    def get_last_measurement_time(self, module_id: str, sensor_type: str) -> Optional[datetime]:
        hardware_id, measurement = split_sensor_key(sensor_type)
        return self._repository.get_last_measurement_time(module_id, measurement, hardware_id=hardware_id)

    def get_device_health(self, module_id: str, hours: float = 24) -> DeviceHealth:
        now = self._clock()
        sensors: List[SensorHealth] = []

        for config in self._repository.get_sensor_configs(module_id):
            last = self.get_last_measurement_time(module_id, config.sensor_type)
            gaps = self.detect_gaps(module_id, config.sensor_type, hours, config=config)
            hardware_id, _ = split_sensor_key(config.sensor_type)
            sensors.append(SensorHealth(
                sensor_type=config.sensor_type,
                hardware_id=hardware_id or config.model,
                status=classify_connection(last, config.interval_seconds, now),
                last_measurement=last,
                time_since_last_ms=int((now - last).total_seconds() * 1000) if last else None,
                expected_interval_seconds=config.interval_seconds,
                gap_count=len(gaps),
                longest_gap_minutes=max((g.gap_duration_minutes for g in gaps), default=None),
            ))

        return DeviceHealth(
            module_id=module_id,
            overall_status=overall_status([s.status for s in sensors]),
            uptime_percent_24h=self.calculate_uptime_percent(module_id, hours),
            last_update=now,
            sensors=sensors,
        )

    def get_unhealthy_devices(self) -> List[Dict[str, str]]:
        unhealthy = []
        for module_id in self._repository.list_module_ids():
            try:
                health = self.get_device_health(module_id)
            except Exception as e:
                logger.error("[HEALTH] Could not evaluate %s: %s", module_id, e)
                continue
            if health.overall_status is not OverallStatus.HEALTHY:
                unhealthy.append({"moduleId": module_id, "status": health.overall_status.value})
        return unhealthy

    def get_sensor_statuses(self, module_id: str) -> List[SensorStatusView]:
        rows = self._repository.get_sensor_statuses(module_id)
        intervals = {c.sensor_type: c.interval_seconds for c in self._repository.get_sensor_configs(module_id)}
        return build_sensor_statuses(rows, intervals, self._clock())

    # -- logged gaps ---------------------------------------------------------

    def get_gap_stats(self, hours: float = 24) -> dict:
        """Resumen de las filas DATA_GAP escritas por el job de detección de huecos."""
        since = self._clock() - timedelta(hours=hours)
        entries: List[SystemLogEntry] = self._repository.get_system_logs(
            category=DATA_GAP_CATEGORY, since=since, limit=10_000,
        )
        by_module: Dict[str, int] = {}
        total_minutes = 0
        for entry in entries:
            details = entry.details or {}
            module_id = details.get("moduleId", "unknown")
            by_module[module_id] = by_module.get(module_id, 0) + 1
            total_minutes += int(details.get("gapDurationMinutes") or 0)
        return {
            "hours": hours,
            "totalGaps": len(entries),
            "totalGapMinutes": total_minutes,
            "byModule": by_module,
        }
