"""Procesamiento de mensajes MQTT entrantes.

Se ejecuta en el thread de red de paho, así que sólo hace trabajo en memoria:
parsing, clasificación, validación, push a los buffers y el envío
(no bloqueante) al broadcaster. Nunca escribe en BD y nunca lanza
excepciones: cada rama termina en un log y un `HandleOutcome`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

import orjson

from ..core.clock import Clock, utcnow
from ..core.domain.measurement import Measurement, MessageCategory, TopicParts
from ..core.domain.status_updates import PayloadDecodeError, StatusUpdate, decode_status_updates
from ..ingest.buffers import IngestionBuffer
from ..live import payloads as live_payloads
from ..live.broadcaster import LiveBroadcaster
from ..live.payloads import LiveUpdate
from ..metrics.pipeline_metrics import MQTT_HANDLER_LATENCY, MQTT_MESSAGES_DROPPED, MQTT_MESSAGES_RECEIVED
from ..registry.manifest_registry import ManifestRegistry
from .topics import classify_message, parse_topic
from .validators import parse_json_payload, parse_measurement, validate_value

logger = logging.getLogger(__name__)

# Logs reenviados desde los módulos (`{module}/logs`)
device_logger = logging.getLogger("telemetry_ingest.device")

DEVICE_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


class HandleOutcome(str, Enum):
    BUFFERED = "buffered"
    DEVICE_LOG = "device_log"
    UNKNOWN = "unknown"
    REJECTED_TOPIC = "rejected_topic"
    MALFORMED = "malformed"
    OUT_OF_RANGE = "out_of_range"
    ECHO = "echo"
    ERROR = "error"


class MessageHandler:
    """Entrada única del pipeline para cada mensaje MQTT."""

    def __init__(
        self,
        registry: ManifestRegistry,
        measurement_buffer: IngestionBuffer[Measurement],
        status_buffer: IngestionBuffer[StatusUpdate],
        broadcaster: Optional[LiveBroadcaster] = None,
        clock: Clock = utcnow,
        config_echo: Optional[Callable[[str, Any], bool]] = None,
    ):
        """
        Args:
            config_echo: Reconoce el `sensors/config` retenido que publicó este
                mismo servicio; esos mensajes no se persisten.
        """
        self._registry = registry
        self._measurements = measurement_buffer
        self._status_updates = status_buffer
        self._broadcaster = broadcaster
        self._clock = clock
        self._config_echo = config_echo

    def handle(self, topic: str, payload: Union[bytes, str]) -> HandleOutcome:
        """Procesa un mensaje. Nunca lanza excepciones."""
        with MQTT_HANDLER_LATENCY.time():
            try:
                return self._handle(topic, payload)
            except Exception as e:
                logger.exception("[MQTT] Unexpected error handling %s: %s", topic, e)
                MQTT_MESSAGES_DROPPED.labels(reason="handler_error").inc()
                return HandleOutcome.ERROR

    def _handle(self, topic: str, payload: Union[bytes, str]) -> HandleOutcome:
        received_at = self._clock()

        parts = parse_topic(topic)
        if parts is None:
            logger.debug("[MQTT] Ignoring topic %s", topic)
            MQTT_MESSAGES_DROPPED.labels(reason="rejected_topic").inc()
            return HandleOutcome.REJECTED_TOPIC

        category = classify_message(topic, parts)
        MQTT_MESSAGES_RECEIVED.labels(category=category.value).inc()

        if category is MessageCategory.MEASUREMENT:
            return self._handle_measurement(topic, parts, payload, received_at)

        if category is MessageCategory.UNKNOWN:
            logger.info("[MQTT] Topic not processed: %s (parts: %s)", topic, ", ".join(parts.parts))
            self._broadcast(live_payloads.passthrough(topic, payload, received_at))
            return HandleOutcome.UNKNOWN

        try:
            data = parse_json_payload(payload)
        except orjson.JSONDecodeError as e:
            logger.warning("[MQTT] Invalid JSON: %s (topic=%s)", e, topic)
            MQTT_MESSAGES_DROPPED.labels(reason="malformed").inc()
            return HandleOutcome.MALFORMED

        self._broadcast(live_payloads.from_json_message(topic, category, data, received_at))

        if category is MessageCategory.LOGS:
            self._relay_device_log(topic, parts.module_id, data)
            return HandleOutcome.DEVICE_LOG

        if category is MessageCategory.SENSORS_CONFIG and self._is_config_echo(parts.module_id, data):
            logger.debug("[MQTT] Ignoring own retained config on %s", topic)
            return HandleOutcome.ECHO

        try:
            updates = decode_status_updates(parts.module_id, category, data, received_at)
        except PayloadDecodeError as e:
            logger.warning("[MQTT] Invalid %s payload from %s: %s", category.value, parts.module_id, e)
            MQTT_MESSAGES_DROPPED.labels(reason="malformed").inc()
            return HandleOutcome.MALFORMED

        for update in updates:
            self._status_updates.push(update)
        return HandleOutcome.BUFFERED

    def _handle_measurement(self, topic, parts: TopicParts, payload, received_at) -> HandleOutcome:
        measurement = parse_measurement(parts, payload, received_at)
        if measurement is None:
            logger.warning("[MQTT] Non-numeric measurement on %s: %r", topic, payload[:64])
            MQTT_MESSAGES_DROPPED.labels(reason="malformed").inc()
            return HandleOutcome.MALFORMED

        self._broadcast(live_payloads.from_measurement(topic, measurement.value, received_at))

        check = validate_value(measurement.sensor_type, measurement.value, self._registry.get_validation_range)
        if not check.valid:
            logger.warning(
                "[MQTT] Rejected %s from %s/%s: %s",
                measurement.sensor_type, measurement.module_id, measurement.hardware_id, check.reason,
            )
            MQTT_MESSAGES_DROPPED.labels(reason="out_of_range").inc()
            return HandleOutcome.OUT_OF_RANGE

        self._measurements.push(measurement)
        return HandleOutcome.BUFFERED

    def _relay_device_log(self, topic: str, module_id: str, data: Any) -> None:
        if not isinstance(data, dict) or "msg" not in data:
            logger.warning("[MQTT] Invalid device log payload on %s", topic)
            return

        level_name = str(data.get("level") or "info").lower()
        device_logger.log(
            DEVICE_LOG_LEVELS.get(level_name, logging.INFO),
            "[HARDWARE:%s] %s",
            module_id,
            data.get("msg"),
            extra={
                "direction": "IN",
                "details": {"moduleId": module_id, "deviceTime": data.get("time"), "source": "esp32"},
            },
        )

    def _is_config_echo(self, module_id: str, data: Any) -> bool:
        if self._config_echo is None:
            return False
        try:
            return self._config_echo(module_id, data)
        except Exception as e:
            logger.warning("[MQTT] Config echo check failed for %s: %s", module_id, e)
            return False

    def _broadcast(self, update: LiveUpdate) -> None:
        if self._broadcaster is None:
            return
        try:
            self._broadcaster.emit(update)
        except Exception as e:
            logger.warning("[WS] Broadcast failed for %s: %s", update.topic, e)
