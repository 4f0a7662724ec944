"""Helpers para claves de sensor.

Las claves de sensor tienen dos formas:
- nombre canónico desnudo (legacy): ``temperature``
- compuesta ``hardware:medición``: ``sht40:temperature``
"""

from __future__ import annotations

from typing import Optional, Tuple

SEPARATOR = ":"


def split_sensor_key(sensor_key: str) -> Tuple[Optional[str], str]:
    """Devuelve (hardware_id, medición). Hardware es None para claves desnudas."""
    if SEPARATOR in sensor_key:
        hardware_id, measurement = sensor_key.split(SEPARATOR, 1)
        return hardware_id, measurement
    return None, sensor_key


def hardware_key(sensor_key: str) -> str:
    """Prefijo antes de ':' (o la clave entera si es desnuda)."""
    return sensor_key.split(SEPARATOR, 1)[0]


def composite_key(hardware_id: str, measurement: str) -> str:
    return f"{hardware_id}{SEPARATOR}{measurement}"


def is_composite(sensor_key: str) -> bool:
    return SEPARATOR in sensor_key
