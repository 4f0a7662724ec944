"""Validadores de mensajes MQTT para ingesta.

- parse_measurement: payload numérico de `{module}/{hardware}/{measurement}`
  a `Measurement` con nombre canónico.
- validate_value: rango permitido del manifest para el tipo canónico.
- parse_json_payload: JSON de los topics de estado.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

import orjson

from ..core.domain.measurement import Measurement, TopicParts
from ..registry.manifest_registry import SensorRange
from .canonical import get_canonical_sensor_type

RangeLookup = Callable[[str], Optional[SensorRange]]


@dataclass
class ValidationResult:
    """Resultado de validar un valor contra su rango."""
    valid: bool
    range: Optional[SensorRange] = None
    reason: Optional[str] = None


def validate_value(sensor_type: str, value: float, get_range: RangeLookup) -> ValidationResult:
    """Valida un valor canónico contra el rango del manifest.

    Tipos sin rango conocido se aceptan (compatibilidad con firmware nuevo).
    Los límites son inclusivos.
    """
    value_range = get_range(sensor_type)
    if value_range is None:
        return ValidationResult(valid=True)

    if value < value_range.min or value > value_range.max:
        return ValidationResult(
            valid=False,
            range=value_range,
            reason=f"Value {value} out of range [{value_range.min}, {value_range.max}]",
        )

    return ValidationResult(valid=True, range=value_range)


def parse_numeric_payload(payload: Union[bytes, str]) -> Optional[float]:
    """Decimal desnudo a float. None si no es numérico o no es finito."""
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        value = float(text.strip())
    except (UnicodeDecodeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_measurement(
    parts: TopicParts,
    payload: Union[bytes, str],
    received_at: datetime,
) -> Optional[Measurement]:
    """Construye la medición canónica. None si el payload no es numérico."""
    if len(parts.parts) != 3 or not parts.category or not parts.sensor_type:
        return None

    value = parse_numeric_payload(payload)
    if value is None:
        return None

    hardware_id = parts.category
    return Measurement(
        time=received_at,
        module_id=parts.module_id,
        sensor_type=get_canonical_sensor_type(hardware_id, parts.sensor_type),
        hardware_id=hardware_id,
        value=value,
    )


def parse_json_payload(payload: Union[bytes, str]) -> Any:
    """JSON del payload (orjson). Lanza orjson.JSONDecodeError si es inválido."""
    return orjson.loads(payload)
