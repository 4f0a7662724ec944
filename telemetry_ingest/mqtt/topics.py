"""Parsing y clasificación de topics MQTT.

Formato de topics publicados por los módulos:
    {moduleId}/system
    {moduleId}/system/config
    {moduleId}/sensors/status
    {moduleId}/sensors/config
    {moduleId}/hardware/config
    {moduleId}/logs
    {moduleId}/{hardwareId}/{measurement}    -> medición (payload numérico)

Ambas funciones son puras: no hacen I/O ni logging.
"""

from __future__ import annotations

from typing import Optional

from ..core.domain.measurement import MessageCategory, TopicParts

# Prefijos de firmware de desarrollo / pruebas que nunca se ingieren
REJECTED_MODULE_PREFIXES = ("home", "dev")
REJECTED_MODULE_IDS = frozenset({"test-module"})

# Categorías reservadas: un topic de 3 partes con estas categorías no es medición
RESERVED_CATEGORIES = frozenset({"sensors", "system", "hardware", "logs"})

# Orden de prioridad: el sufijo más largo primero
_SUFFIX_CATEGORIES = (
    ("/system/config", MessageCategory.SYSTEM_CONFIG),
    ("/system", MessageCategory.SYSTEM),
    ("/sensors/status", MessageCategory.SENSORS_STATUS),
    ("/sensors/config", MessageCategory.SENSORS_CONFIG),
    ("/hardware/config", MessageCategory.HARDWARE_CONFIG),
    ("/logs", MessageCategory.LOGS),
)


def parse_topic(topic: str) -> Optional[TopicParts]:
    """Descompone un topic en sus partes.

    Returns:
        TopicParts, o None si el topic se rechaza (menos de 2 segmentos o
        módulo de desarrollo/pruebas).
    """
    parts = topic.split("/")
    if len(parts) < 2:
        return None

    module_id = parts[0]
    if module_id.startswith(REJECTED_MODULE_PREFIXES) or module_id in REJECTED_MODULE_IDS:
        return None

    return TopicParts(
        module_id=module_id,
        category=parts[1] or None,
        sensor_type=(parts[2] or None) if len(parts) > 2 else None,
        parts=tuple(parts),
    )


def classify_message(topic: str, parts: TopicParts) -> MessageCategory:
    """Clasifica un mensaje por su topic."""
    for suffix, category in _SUFFIX_CATEGORIES:
        if topic.endswith(suffix):
            return category

    if (
        len(parts.parts) == 3
        and parts.category not in RESERVED_CATEGORIES
        and "/status" not in topic
        and "/config" not in topic
    ):
        return MessageCategory.MEASUREMENT

    return MessageCategory.UNKNOWN
