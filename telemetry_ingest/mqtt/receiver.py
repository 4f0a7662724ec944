"""Cliente MQTT principal.

Usa paho-mqtt para recibir todos los topics (`#`) y entrega cada mensaje al
`MessageHandler`. También publica configuración y comandos hacia los módulos.

El callback de mensajes corre en el thread de red de paho: sólo llama al
handler (trabajo en memoria). La republicación de configuración tras cada
conexión se hace en un thread aparte para no bloquear la red con la BD.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

import orjson
import paho.mqtt.client as mqtt

from ..metrics.pipeline_metrics import MQTT_RECEIVER_CONNECTED
from .message_handler import HandleOutcome, MessageHandler

logger = logging.getLogger(__name__)

SUBSCRIBE_TOPIC = "#"


class MQTTReceiver:
    """Receptor MQTT conectado al pipeline de ingesta."""

    def __init__(
        self,
        handler: MessageHandler,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "telemetry-ingest",
        on_connected: Optional[Callable[[], Any]] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"

        self._handler = handler
        self._on_connected = on_connected
        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = False

        # Stats
        self._stats = ReceiverStats()

    def set_on_connected(self, callback: Optional[Callable[[], Any]]) -> None:
        self._on_connected = callback

    def start(self, wait_seconds: float = 5.0) -> bool:
        """Inicia el receptor. paho reintenta la conexión en segundo plano."""
        try:
            self._client = mqtt.Client(
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message
            self._client.reconnect_delay_set(min_delay=1, max_delay=30)

            if self.username and self.password:
                self._client.username_pw_set(self.username, self.password)

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)

            self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()
            self._running = True

            # Esperar conexión
            deadline = time.time() + wait_seconds
            while time.time() < deadline and not self._connected:
                time.sleep(0.1)

            if self._connected:
                logger.info("[MQTT] Started successfully")
            else:
                logger.warning("[MQTT] Not connected yet after %.1fs, retrying in background", wait_seconds)
            return self._connected

        except Exception as e:
            logger.exception("[MQTT] Start failed: %s", e)
            return False

    def stop(self) -> None:
        """Detiene el receptor."""
        self._running = False

        if self._client:
            try:
                self._client.disconnect()
                self._client.loop_stop()
            except Exception as e:
                logger.warning("[MQTT] Error stopping: %s", e)

        self._connected = False
        MQTT_RECEIVER_CONNECTED.set(0)
        logger.info("[MQTT] Stopped. %s", self._stats)

    def publish(self, topic: str, payload: Mapping[str, Any], qos: int = 1, retain: bool = False) -> bool:
        """Publica un payload JSON. False si no hay conexión o paho lo rechaza."""
        if self._client is None or not self._connected:
            logger.warning("[MQTT] Cannot publish to %s: not connected", topic)
            return False
        try:
            info = self._client.publish(topic, orjson.dumps(payload), qos=qos, retain=retain)
        except Exception as e:
            logger.warning("[MQTT] Publish to %s failed: %s", topic, e)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("[MQTT] Publish to %s rejected: rc=%s", topic, info.rc)
            return False
        self._stats.published += 1
        return True

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        """Callback de conexión."""
        if rc == 0:
            self._connected = True
            MQTT_RECEIVER_CONNECTED.set(1)
            logger.info("[MQTT] Connected to broker")
            client.subscribe(SUBSCRIBE_TOPIC, qos=1)
            logger.info("[MQTT] Subscribed to %s", SUBSCRIBE_TOPIC)
            if self._on_connected is not None:
                threading.Thread(target=self._run_on_connected, name="mqtt-on-connect", daemon=True).start()
        else:
            self._connected = False
            logger.error("[MQTT] Connection failed: rc=%s", rc)

    def _run_on_connected(self) -> None:
        try:
            self._on_connected()
        except Exception as e:
            logger.exception("[MQTT] on_connected hook failed: %s", e)

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        """Callback de desconexión."""
        self._connected = False
        MQTT_RECEIVER_CONNECTED.set(0)
        logger.warning("[MQTT] Disconnected (rc=%s)", rc)

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje recibido."""
        self._stats.received += 1
        self._stats.last_message_at = time.time()

        outcome = self._handler.handle(msg.topic, msg.payload)
        if outcome is HandleOutcome.BUFFERED:
            self._stats.buffered += 1
        elif outcome in (HandleOutcome.MALFORMED, HandleOutcome.OUT_OF_RANGE, HandleOutcome.ERROR):
            self._stats.dropped += 1

        if self._stats.received % 1000 == 0:
            logger.info("[MQTT] %s", self._stats)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self._connected,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "messages_received": self._stats.received,
            "messages_buffered": self._stats.buffered,
            "messages_dropped": self._stats.dropped,
            "messages_published": self._stats.published,
            "last_message_at": self._stats.last_message_at,
        }


class ReceiverStats:
    """Estadísticas del receptor."""

    def __init__(self):
        self.received = 0
        self.buffered = 0
        self.dropped = 0
        self.published = 0
        self.last_message_at: float = 0

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} buffered={self.buffered} "
            f"dropped={self.dropped} published={self.published}"
        )
