"""Publicador de actualizaciones en vivo a Redis pub/sub.

Permite que otros procesos (otra réplica del API, el dashboard) reciban el
mismo feed `mqtt:data` sin conectarse al broker MQTT.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis

from .payloads import LiveUpdate

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "telemetry:live"


class RedisLiveSink:
    """Publica cada LiveUpdate en un canal de Redis."""

    def __init__(self, url: str, channel: str = DEFAULT_CHANNEL, client: Optional[redis.Redis] = None):
        self._url = url
        self._channel = channel
        self._client = client
        self._connected = client is not None
        self.published = 0

    def connect(self) -> bool:
        """Conecta a Redis."""
        try:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=False,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            self._client.ping()
            self._connected = True
            logger.info("[REDIS] Live sink connected: %s channel=%s", self._url.split("@")[-1], self._channel)
            return True
        except Exception as e:
            self._connected = False
            logger.warning("[REDIS] Live sink connection failed: %s", e)
            return False

    def disconnect(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("[REDIS] Error closing live sink: %s", e)
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def channel(self) -> str:
        return self._channel

    def publish(self, update: LiveUpdate) -> bool:
        if not self._connected or self._client is None:
            return False
        try:
            self._client.publish(self._channel, update.to_message())
            self.published += 1
            return True
        except Exception as e:
            logger.warning("[REDIS] Live publish failed: %s", e)
            return False
