"""Payloads de estado publicados por los módulos, decodificados a updates tipados.

Cada topic de estado JSON corresponde a un modelo pydantic; un mensaje
decodificado se convierte en uno o más `StatusUpdate` etiquetados con
`StatusUpdateType`, que es lo que lleva el buffer de estado y sobre lo que
despacha el batch persister.

Los payloads cambian entre generaciones de firmware: todos los campos son
opcionales y los campos desconocidos se ignoran.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError, field_validator

from .measurement import MessageCategory

logger = logging.getLogger(__name__)


class PayloadDecodeError(ValueError):
    """El JSON es válido pero no tiene la forma que espera su topic."""


class StatusUpdateType(str, Enum):
    SYSTEM = "system"
    SYSTEM_CONFIG = "system_config"
    SENSORS_STATUS = "sensors_status"
    SENSORS_CONFIG = "sensors_config"
    HARDWARE = "hardware"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _lenient_int(value: Any) -> Optional[int]:
    """Acepta ints, floats enteros y strings numéricos; cualquier otra cosa es None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class MemoryInfo(_Payload):
    heap_total_kb: Optional[int] = Field(default=None, alias="heapTotalKb")
    heap_free_kb: Optional[int] = Field(default=None, alias="heapFreeKb")
    heap_min_free_kb: Optional[int] = Field(default=None, alias="heapMinFreeKb")


class FlashInfo(_Payload):
    total_kb: Optional[int] = Field(default=None, alias="totalKb")
    used_kb: Optional[int] = Field(default=None, alias="usedKb")
    free_kb: Optional[int] = Field(default=None, alias="freeKb")
    # Older firmware reports systemKb instead of totalKb
    system_kb: Optional[int] = Field(default=None, alias="systemKb")

    @property
    def reported_total_kb(self) -> Optional[int]:
        return self.total_kb if self.total_kb is not None else self.system_kb


class SystemPayload(_Payload):
    """`{module}/system`: telemetría periódica de RSSI y heap."""
    rssi: Optional[int] = None
    memory: Optional[MemoryInfo] = None


class SystemConfigPayload(_Payload):
    """`{module}/system/config`: identidad, arranque y memoria."""
    module_type: Optional[str] = Field(default=None, alias="moduleType")
    ip: Optional[str] = None
    mac: Optional[str] = None
    uptime_start: Optional[int] = Field(default=None, alias="uptimeStart")
    rssi: Optional[int] = None
    flash: Optional[FlashInfo] = None
    memory: Optional[MemoryInfo] = None

    @field_validator("uptime_start", mode="before")
    @classmethod
    def _parse_uptime(cls, v: Any) -> Optional[int]:
        seconds = _lenient_int(v)
        if seconds is None or seconds < 0:
            return None
        return seconds

    def booted_at(self, received_at: datetime) -> Optional[datetime]:
        if self.uptime_start is None:
            return None
        return received_at - timedelta(seconds=self.uptime_start)


class SensorStatusEntry(_Payload):
    status: Optional[str] = None
    value: Optional[float] = None


class SensorsStatusPayload(RootModel[Dict[str, SensorStatusEntry]]):
    """`{module}/sensors/status`: último estado por clave de sensor."""


class SensorConfigEntry(_Payload):
    interval: Optional[int] = None
    model: Optional[str] = None

    @field_validator("interval", mode="before")
    @classmethod
    def _positive_interval(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        seconds = _lenient_int(v)
        if seconds is None or seconds <= 0:
            logger.warning("[MQTT] Ignoring invalid sensor interval %r", v)
            return None
        return seconds


class SensorsConfigPayload(RootModel[Dict[str, SensorConfigEntry]]):
    """`{module}/sensors/config`: intervalo de reporte y modelo por clave de sensor."""


class ChipInfo(_Payload):
    model: Optional[str] = None
    rev: Optional[int] = None
    cpu_freq_mhz: Optional[int] = Field(default=None, alias="cpuFreqMhz")
    flash_kb: Optional[int] = Field(default=None, alias="flashKb")
    cores: Optional[int] = None


class HardwarePayload(_Payload):
    """`{module}/hardware/config`: descripción del chip."""
    chip: Optional[ChipInfo] = None


StatusPayload = Union[
    SystemPayload,
    SystemConfigPayload,
    SensorsStatusPayload,
    SensorsConfigPayload,
    HardwarePayload,
]


@dataclass(frozen=True)
class StatusUpdate:
    """Cambio de estado de dispositivo pendiente en el buffer de estado."""
    module_id: str
    type: StatusUpdateType
    data: StatusPayload
    received_at: datetime


def _validate(model, data: Any):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise PayloadDecodeError(f"{model.__name__}: {e.error_count()} invalid field(s)") from e


def decode_status_updates(
    module_id: str,
    category: MessageCategory,
    data: Any,
    received_at: datetime,
) -> List[StatusUpdate]:
    """Decodifica un mensaje de estado ya parseado en updates tipados.

    El formato anidado de sensors/status ``{moduleId, moduleType, sensors}``
    produce dos updates: un system_config que sólo lleva el tipo de módulo y
    el sensors_status del objeto ``sensors`` interno.

    Raises:
        PayloadDecodeError: el payload no es un objeto o no encaja en su tipo.
    """
    if not isinstance(data, dict):
        raise PayloadDecodeError(f"expected JSON object, got {type(data).__name__}")

    def update(kind: StatusUpdateType, payload: StatusPayload) -> StatusUpdate:
        return StatusUpdate(module_id=module_id, type=kind, data=payload, received_at=received_at)

    if category is MessageCategory.SYSTEM:
        return [update(StatusUpdateType.SYSTEM, _validate(SystemPayload, data))]

    if category is MessageCategory.SYSTEM_CONFIG:
        return [update(StatusUpdateType.SYSTEM_CONFIG, _validate(SystemConfigPayload, data))]

    if category is MessageCategory.SENSORS_STATUS:
        nested = data.get("sensors")
        if isinstance(nested, dict):
            updates: List[StatusUpdate] = []
            module_type = data.get("moduleType")
            if module_type:
                updates.append(update(
                    StatusUpdateType.SYSTEM_CONFIG,
                    _validate(SystemConfigPayload, {"moduleType": module_type}),
                ))
            updates.append(update(StatusUpdateType.SENSORS_STATUS, _validate(SensorsStatusPayload, nested)))
            return updates
        return [update(StatusUpdateType.SENSORS_STATUS, _validate(SensorsStatusPayload, data))]

    if category is MessageCategory.SENSORS_CONFIG:
        nested = data.get("sensors")
        if isinstance(nested, dict):
            data = nested
        return [update(StatusUpdateType.SENSORS_CONFIG, _validate(SensorsConfigPayload, data))]

    if category is MessageCategory.HARDWARE_CONFIG:
        return [update(StatusUpdateType.HARDWARE, _validate(HardwarePayload, data))]

    raise PayloadDecodeError(f"category {category.value} carries no status update")
