"""Composición del pipeline de ingesta.

Un `TelemetryPipeline` es dueño de los dos buffers de ingesta con sus threads
de flush, del handler de mensajes MQTT, del publicador de config, del
broadcaster en vivo y del job de huecos. `build_pipeline()` lo arma desde
`Settings`; los tests lo construyen directo con un repositorio en memoria y
un publisher mock.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from common.config import Settings
from common.db import get_engine
from jobs.gap_detection import GapDetectionJob, GapJobConfig

from .core.clock import Clock, utcnow
from .core.domain.measurement import Measurement
from .core.domain.repository import TelemetryRepository
from .core.domain.status_updates import StatusUpdate
from .health.service import HealthService
from .infrastructure.audit import SystemLogHandler
from .infrastructure.persistence import SqlDeviceRepository, SqlTelemetryRepository, ensure_schema
from .ingest.batch_persister import BatchPersister
from .ingest.buffers import IngestionBuffer
from .ingest.flush_scheduler import PeriodicFlusher
from .live.broadcaster import LiveBroadcaster
from .live.redis_sink import RedisLiveSink
from .mqtt.config_publisher import ConfigPublisher, MqttPublisher
from .mqtt.message_handler import MessageHandler
from .mqtt.receiver import MQTTReceiver
from .registry.manifest_registry import ManifestRegistry

logger = logging.getLogger(__name__)


class TelemetryPipeline:
    def __init__(
        self,
        repository: TelemetryRepository,
        registry: ManifestRegistry,
        *,
        device_repository: Optional[SqlDeviceRepository] = None,
        publisher: Optional[MqttPublisher] = None,
        broadcaster: Optional[LiveBroadcaster] = None,
        measurement_flush_size: int = 100,
        measurement_flush_interval: float = 5.0,
        status_flush_size: int = 50,
        status_flush_interval: float = 2.5,
        gap_interval_minutes: float = 15,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.registry = registry
        self.device_repository = device_repository
        self.broadcaster = broadcaster or LiveBroadcaster()
        self._publisher = publisher
        self._clock = clock

        self.measurement_buffer: IngestionBuffer[Measurement] = IngestionBuffer(
            "measurements", measurement_flush_size,
        )
        self.status_buffer: IngestionBuffer[StatusUpdate] = IngestionBuffer(
            "status", status_flush_size,
        )
        self.persister = BatchPersister(repository, registry, self.measurement_buffer, self.status_buffer)

        self.measurement_flusher = PeriodicFlusher(
            "measurements", self.persister.flush_measurements, measurement_flush_interval,
        )
        self.status_flusher = PeriodicFlusher(
            "status", self.persister.flush_status_updates, status_flush_interval,
        )
        # Size-triggered flushes only wake the flusher thread
        self.measurement_buffer.set_threshold_callback(self.measurement_flusher.request_flush)
        self.status_buffer.set_threshold_callback(self.status_flusher.request_flush)

        self.config_publisher = ConfigPublisher(self, repository, registry, clock=clock)
        self.handler = MessageHandler(
            registry,
            self.measurement_buffer,
            self.status_buffer,
            self.broadcaster,
            clock=clock,
            config_echo=self.config_publisher.is_own_config,
        )
        self.health_service = HealthService(repository, clock=clock)
        self.gap_job = GapDetectionJob(
            self.health_service, repository, GapJobConfig(interval_minutes=gap_interval_minutes), clock=clock,
        )

        self.receiver: Optional[MQTTReceiver] = None
        self.redis_sink: Optional[RedisLiveSink] = None
        self.log_handler: Optional[SystemLogHandler] = None
        self._started = False

    # -- wiring --------------------------------------------------------------

    def attach_receiver(self, receiver: MQTTReceiver) -> None:
        """Usa `receiver` para publicar y republica la config en cada conexión."""
        self.receiver = receiver
        self._publisher = receiver
        receiver.set_on_connected(self.config_publisher.republish_all)

    def attach_redis_sink(self, sink: RedisLiveSink) -> None:
        self.redis_sink = sink
        self.broadcaster.add_sink(sink)

    def install_log_handler(self, handler: SystemLogHandler) -> None:
        self.log_handler = handler
        logging.getLogger().addHandler(handler)

    def publish(self, topic: str, payload: Mapping[str, Any], qos: int = 1, retain: bool = False) -> bool:
        if self._publisher is None:
            logger.warning("[MQTT] No publisher attached, dropping publish to %s", topic)
            return False
        return self._publisher.publish(topic, payload, qos=qos, retain=retain)

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self.measurement_flusher.start()
        self.status_flusher.start()
        if self.redis_sink is not None:
            self.redis_sink.connect()
        if self.receiver is not None:
            self.receiver.start()
        self.gap_job.start()
        self._started = True
        logger.info("[PIPELINE] Started")

    def stop(self) -> None:
        if not self._started:
            return
        # Stop intake first so the final flush sees everything received
        if self.receiver is not None:
            self.receiver.stop()
        self.gap_job.stop()
        self.measurement_flusher.stop(flush_remaining=True)
        self.status_flusher.stop(flush_remaining=True)
        if self.redis_sink is not None:
            self.redis_sink.disconnect()
        if self.log_handler is not None:
            logging.getLogger().removeHandler(self.log_handler)
            self.log_handler.close()
            self.log_handler = None
        self._started = False
        logger.info("[PIPELINE] Stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    def flush(self) -> int:
        """Flush síncrono de ambos buffers."""
        return self.measurement_flusher.flush_now() + self.status_flusher.flush_now()

    # -- introspection -----------------------------------------------------

    def stats(self) -> dict:
        return {
            "buffers": {
                "measurements": self.measurement_buffer.stats,
                "status": self.status_buffer.stats,
            },
            "flushers": {
                "measurements": self.measurement_flusher.flush_count,
                "status": self.status_flusher.flush_count,
            },
            "mqtt": self.receiver.stats if self.receiver is not None else None,
            "live": self.broadcaster.stats,
            "gap_job_runs": self.gap_job.runs,
        }

    def readiness(self) -> dict:
        db_ok, db_error = self.repository.ping()
        mqtt_ok = self.receiver is not None and self.receiver.is_connected
        return {
            "ready": db_ok and mqtt_ok,
            "database": {"ok": db_ok, "error": db_error},
            "mqtt": {"ok": mqtt_ok},
        }


def build_pipeline(settings: Settings) -> TelemetryPipeline:
    """Arma el pipeline de producción: PostgreSQL, receptor paho y Redis opcional."""
    engine = get_engine(settings)
    ensure_schema(engine)

    registry = ManifestRegistry()
    registry.load_all(settings.manifests_dir)

    repository = SqlTelemetryRepository(engine)
    pipeline = TelemetryPipeline(
        repository,
        registry,
        device_repository=SqlDeviceRepository(engine),
        measurement_flush_size=settings.measurement_flush_size,
        measurement_flush_interval=settings.measurement_flush_interval_seconds,
        status_flush_size=settings.status_flush_size,
        status_flush_interval=settings.status_flush_interval_seconds,
        gap_interval_minutes=settings.gap_detection_interval_minutes,
    )

    pipeline.attach_receiver(MQTTReceiver(
        pipeline.handler,
        broker_host=settings.mqtt_broker_host,
        broker_port=settings.mqtt_broker_port,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        client_id=settings.mqtt_client_id,
    ))

    if settings.redis_url:
        pipeline.attach_redis_sink(RedisLiveSink(settings.redis_url, settings.live_redis_channel))

    if settings.db_log_sink_enabled:
        pipeline.install_log_handler(SystemLogHandler(repository))

    return pipeline
