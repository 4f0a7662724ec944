"""Publicación de configuración y comandos hacia los módulos.

Topics salientes:
    {module}/sensors/config   {"<hardware>": {"interval": n}}   retained, QoS 1
    {module}/sensors/reset    {"sensor": "<hardware>"}          QoS 1
    {module}/sensors/enable   {"hardware": "...", "enabled": b} QoS 1

La configuración se republica completa para todos los módulos en cada
(re)conexión al broker, y por módulo en cada cambio hecho por un usuario.

Como el receiver está suscrito a `#`, el broker devuelve el config retenido
que publicamos; `is_own_config()` permite reconocer ese eco.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Mapping, Optional, Protocol

from ..core.clock import Clock, utcnow
from ..core.domain.repository import TelemetryRepository
from ..core.domain.sensor_keys import hardware_key
from ..registry.manifest_registry import ManifestRegistry

logger = logging.getLogger(__name__)


class ConfigPublishError(RuntimeError):
    """Falló la persistencia o la publicación de un cambio de configuración."""


class MqttPublisher(Protocol):
    def publish(self, topic: str, payload: Mapping[str, Any], qos: int = 1, retain: bool = False) -> bool: ...


def collapse_to_hardware(sensors: Mapping[str, Optional[int]]) -> Dict[str, Dict[str, int]]:
    """Agrupa claves compuestas (`sht40:temperature`) por hardware (`sht40`).

    Si varias claves del mismo hardware tienen intervalos distintos gana la
    última. Claves sin intervalo se omiten.
    """
    collapsed: Dict[str, Dict[str, int]] = {}
    for sensor_key, interval in sensors.items():
        if interval is None:
            continue
        collapsed[hardware_key(sensor_key)] = {"interval": int(interval)}
    return collapsed


class ConfigPublisher:
    """Publica configuración de sensores y comandos a los módulos."""

    def __init__(
        self,
        publisher: MqttPublisher,
        repository: TelemetryRepository,
        registry: ManifestRegistry,
        clock: Clock = utcnow,
    ):
        self._publisher = publisher
        self._repository = repository
        self._registry = registry
        self._clock = clock
        self._last_published: Dict[str, Dict[str, Dict[str, int]]] = {}
        self._last_published_lock = threading.Lock()

    def publish_config(self, module_id: str, sensors: Mapping[str, Optional[int]]) -> bool:
        payload = collapse_to_hardware(sensors)
        if not payload:
            logger.debug("[MQTT] No sensor intervals to publish for %s", module_id)
            return False
        topic = f"{module_id}/sensors/config"
        # Registrado antes de publicar: el eco puede llegar antes de que publish() retorne
        with self._last_published_lock:
            previous = self._last_published.get(module_id)
            self._last_published[module_id] = payload
        ok = self._publisher.publish(topic, payload, qos=1, retain=True)
        if ok:
            logger.info("[MQTT] Published config to %s: %s", topic, payload)
        else:
            logger.warning("[MQTT] Failed to publish config to %s", topic)
            with self._last_published_lock:
                if previous is None:
                    self._last_published.pop(module_id, None)
                else:
                    self._last_published[module_id] = previous
        return ok

    def is_own_config(self, module_id: str, data: Any) -> bool:
        """True si `data` es exactamente el último config publicado para el módulo."""
        with self._last_published_lock:
            last = self._last_published.get(module_id)
        return last is not None and data == last

    def republish_all(self) -> int:
        """Republica la configuración habilitada de todos los módulos.

        Nunca lanza excepciones (se ejecuta tras cada reconexión).
        """
        try:
            configs = self._repository.get_enabled_sensor_configs_by_module()
        except Exception as e:
            logger.error("[MQTT] Could not load sensor configs for republish: %s", e)
            return 0

        published = 0
        for module_id, sensors in configs.items():
            try:
                if self.publish_config(module_id, sensors):
                    published += 1
            except Exception as e:
                logger.error("[MQTT] Republish failed for %s: %s", module_id, e)
        logger.info("[MQTT] Republished config for %d/%d module(s)", published, len(configs))
        return published

    def apply_user_config(
        self,
        module_id: str,
        intervals: Mapping[str, int],
        models: Optional[Mapping[str, Optional[str]]] = None,
    ) -> Dict[str, Dict[str, int]]:
        """Guarda intervalos (y modelos) pedidos por un usuario y los publica al módulo.

        Las claves de hardware se expanden a las claves compuestas del
        manifest del módulo. Un modelo ausente deja el guardado intacto.

        Raises:
            ConfigPublishError: si falla la BD o la publicación MQTT.
        """
        now = self._clock()
        try:
            module_type = self._repository.get_module_type(module_id)
            for sensor_key, interval in intervals.items():
                model = (models or {}).get(sensor_key)
                for expanded in self._registry.expand_sensor_key(module_type, sensor_key):
                    self._repository.upsert_sensor_config(module_id, expanded, interval, model, now)
            enabled = self._repository.get_enabled_sensor_configs_by_module().get(module_id, {})
        except Exception as e:
            logger.error("[DB] Failed to save sensor config for %s: %s", module_id, e)
            raise ConfigPublishError("failed to save sensor configuration") from e

        if not self.publish_config(module_id, enabled):
            raise ConfigPublishError("failed to publish sensor configuration")
        return collapse_to_hardware(enabled)

    def set_enabled(self, module_id: str, hardware_id: str, enabled: bool) -> bool:
        """Habilita o deshabilita un hardware: persiste el flag y avisa al módulo."""
        now = self._clock()
        try:
            module_type = self._repository.get_module_type(module_id)
            for sensor_key in self._registry.expand_sensor_key(module_type, hardware_id):
                self._repository.upsert_sensor_config(module_id, sensor_key, None, None, now, enabled=enabled)
        except Exception as e:
            logger.error("[DB] Failed to update enabled flag for %s/%s: %s", module_id, hardware_id, e)
            raise ConfigPublishError("failed to save sensor state") from e

        topic = f"{module_id}/sensors/enable"
        ok = self._publisher.publish(topic, {"hardware": hardware_id, "enabled": enabled}, qos=1)
        if not ok:
            logger.warning("[MQTT] Failed to publish %s", topic)
            raise ConfigPublishError("failed to publish enable command")
        logger.info("[MQTT] %s %s on %s", "Enabled" if enabled else "Disabled", hardware_id, module_id)
        return ok

    def publish_reset(self, module_id: str, sensor: str) -> bool:
        topic = f"{module_id}/sensors/reset"
        ok = self._publisher.publish(topic, {"sensor": sensor}, qos=1)
        if ok:
            logger.info("[MQTT] Sent reset for %s to %s", sensor, module_id)
        else:
            logger.warning("[MQTT] Failed to publish %s", topic)
        return ok
