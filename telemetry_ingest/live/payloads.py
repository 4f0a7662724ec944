"""Payloads de actualizaciones en vivo reenviados al dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

import orjson

from ..core.domain.measurement import MessageCategory
from ..mqtt.validators import parse_numeric_payload

LIVE_EVENT = "mqtt:data"


@dataclass(frozen=True)
class LiveUpdate:
    topic: str
    value: Optional[float]
    metadata: Optional[Dict[str, Any]]
    time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "value": self.value,
            "metadata": self.metadata,
            "time": self.time.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }

    def to_message(self) -> bytes:
        return orjson.dumps({"event": LIVE_EVENT, "data": self.to_dict()})


def from_json_message(topic: str, category: MessageCategory, data: Any, received_at: datetime) -> LiveUpdate:
    """Las categorías estructuradas viajan como metadata.

    El formato anidado de sensors/status se desenvuelve: los clientes
    siempre reciben el mapa por sensor.
    """
    metadata: Optional[Dict[str, Any]]
    if isinstance(data, dict):
        nested = data.get("sensors")
        if category is MessageCategory.SENSORS_STATUS and isinstance(nested, dict):
            metadata = nested
        else:
            metadata = data
    else:
        metadata = {"raw": data}
    return LiveUpdate(topic=topic, value=None, metadata=metadata, time=received_at)


def from_measurement(topic: str, value: float, received_at: datetime) -> LiveUpdate:
    return LiveUpdate(topic=topic, value=value, metadata=None, time=received_at)


def passthrough(topic: str, payload: Union[bytes, str], received_at: datetime) -> LiveUpdate:
    """Topics desconocidos: objeto JSON, si no número, si no texto crudo."""
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        return LiveUpdate(topic=topic, value=None, metadata=data, time=received_at)

    value = parse_numeric_payload(payload)
    if value is not None:
        return from_measurement(topic, value, received_at)

    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    return LiveUpdate(topic=topic, value=None, metadata={"raw": text}, time=received_at)
