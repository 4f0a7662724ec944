"""Tipos base de telemetría compartidos por las capas MQTT, ingesta y persistencia."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class MessageCategory(str, Enum):
    """Tipo de mensaje MQTT entrante, decidido sólo por el topic."""
    SYSTEM_CONFIG = "system_config"
    SYSTEM = "system"
    SENSORS_STATUS = "sensors_status"
    SENSORS_CONFIG = "sensors_config"
    HARDWARE_CONFIG = "hardware_config"
    LOGS = "logs"
    MEASUREMENT = "measurement"
    UNKNOWN = "unknown"

    @property
    def is_json(self) -> bool:
        return self not in (MessageCategory.MEASUREMENT, MessageCategory.UNKNOWN)


@dataclass(frozen=True)
class TopicParts:
    """Topic `{moduleId}/{category}/{sensorType}` ya parseado."""
    module_id: str
    category: Optional[str]
    sensor_type: Optional[str]
    parts: Tuple[str, ...]


MeasurementKey = Tuple[datetime, str, str, str]


@dataclass(frozen=True)
class Measurement:
    """Lectura inmutable, con clave (time, module_id, sensor_type, hardware_id).

    `sensor_type` es siempre el nombre canónico; `hardware_id` conserva el
    chip físico que la produjo.
    """
    time: datetime
    module_id: str
    sensor_type: str
    hardware_id: str
    value: float

    @property
    def key(self) -> MeasurementKey:
        return (self.time, self.module_id, self.sensor_type, self.hardware_id)

    def to_row(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "module_id": self.module_id,
            "sensor_type": self.sensor_type,
            "hardware_id": self.hardware_id,
            "value": self.value,
        }
