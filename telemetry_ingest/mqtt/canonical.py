"""Mapeo de nombres de medición específicos de hardware a nombres canónicos.

Cada chip publica con su propia nomenclatura. Aguas abajo sólo se usan
nombres canónicos; el hardware se conserva en ``Measurement.hardware_id``.
"""

from __future__ import annotations

from typing import Mapping

CANONICAL_MAPPINGS: Mapping[str, Mapping[str, str]] = {
    "bmp280": {"temperature": "temperature", "pressure": "pressure"},
    "sht40": {"temperature": "temperature", "humidity": "humidity"},
    "sht31": {"temperature": "temperature", "humidity": "humidity"},
    "dht22": {"temperature": "temperature", "humidity": "humidity"},
    "scd41": {"co2": "co2", "temperature": "temperature", "humidity": "humidity"},
    "sgp30": {"eco2": "eco2", "tvoc": "tvoc"},
    "sgp40": {"voc": "voc"},
    "sps30": {"pm1": "pm1", "pm25": "pm25", "pm4": "pm4", "pm10": "pm10"},
    "mhz14a": {"co2": "co2"},
    "mq7": {"co": "co"},
}


def get_canonical_sensor_type(hardware_id: str, raw_sensor_type: str) -> str:
    """Nombre canónico; passthrough si el hardware o la medición no se conocen."""
    mapping = CANONICAL_MAPPINGS.get(hardware_id)
    if not mapping:
        return raw_sensor_type
    return mapping.get(raw_sensor_type, raw_sensor_type)
