"""Tests del MessageHandler: del mensaje MQTT al buffer, y end-to-end hasta la BD.

Ejecutar:
    pytest tests/test_message_handler.py -v
"""

import logging
from unittest.mock import MagicMock

import orjson
import pytest

from telemetry_ingest.core.domain.status_updates import StatusUpdateType, SystemConfigPayload
from telemetry_ingest.ingest import BatchPersister, IngestionBuffer
from telemetry_ingest.mqtt.message_handler import HandleOutcome, MessageHandler
from telemetry_ingest.pipeline import TelemetryPipeline

from .conftest import T0


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def buffers():
    return IngestionBuffer("measurements", 100), IngestionBuffer("status", 50)


@pytest.fixture
def broadcaster():
    return MagicMock()


@pytest.fixture
def handler(registry, buffers, broadcaster, clock):
    measurement_buffer, status_buffer = buffers
    return MessageHandler(registry, measurement_buffer, status_buffer, broadcaster, clock=clock)


def emitted(broadcaster):
    return [c.args[0] for c in broadcaster.emit.call_args_list]


# =============================================================================
# MEASUREMENTS
# =============================================================================

class TestMeasurementMessages:
    def test_valid_measurement_buffered_and_broadcast(self, handler, buffers, broadcaster):
        outcome = handler.handle("greenhouse/bmp280/pressure", b"1013.25")

        assert outcome is HandleOutcome.BUFFERED
        [m] = buffers[0].snapshot()
        assert (m.module_id, m.hardware_id, m.sensor_type, m.value) == ("greenhouse", "bmp280", "pressure", 1013.25)
        [update] = emitted(broadcaster)
        assert update.topic == "greenhouse/bmp280/pressure"
        assert update.value == 1013.25
        assert update.metadata is None

    def test_out_of_range_rejected_but_broadcast(self, handler, buffers, broadcaster, caplog):
        with caplog.at_level(logging.WARNING):
            outcome = handler.handle("m1/sht40/temperature", b"120")

        assert outcome is HandleOutcome.OUT_OF_RANGE
        assert len(buffers[0]) == 0
        assert len(emitted(broadcaster)) == 1
        assert "out of range" in caplog.text

    def test_non_numeric_dropped_silently(self, handler, buffers, broadcaster):
        assert handler.handle("m1/sht40/temperature", b"NaN-ish") is HandleOutcome.MALFORMED
        assert len(buffers[0]) == 0
        broadcaster.emit.assert_not_called()

    def test_rejected_topic_never_broadcast(self, handler, broadcaster):
        assert handler.handle("test-module/sht40/temperature", b"21") is HandleOutcome.REJECTED_TOPIC
        assert handler.handle("orphan", b"21") is HandleOutcome.REJECTED_TOPIC
        broadcaster.emit.assert_not_called()


# =============================================================================
# STATUS / JSON MESSAGES
# =============================================================================

class TestStatusMessages:
    def test_system_config_buffered(self, handler, buffers):
        payload = orjson.dumps({"moduleType": "air-quality", "ip": "10.0.0.9"})
        assert handler.handle("m1/system/config", payload) is HandleOutcome.BUFFERED

        [update] = buffers[1].snapshot()
        assert update.type is StatusUpdateType.SYSTEM_CONFIG
        assert update.received_at == T0

    def test_nested_status_broadcasts_inner_sensors(self, handler, buffers, broadcaster):
        payload = orjson.dumps({
            "moduleId": "m1",
            "moduleType": "air-quality",
            "sensors": {"scd41:co2": {"status": "ok", "value": 640}},
        })
        handler.handle("m1/sensors/status", payload)

        assert len(buffers[1]) == 2
        [update] = emitted(broadcaster)
        assert update.metadata == {"scd41:co2": {"status": "ok", "value": 640}}

    def test_invalid_json_dropped(self, handler, buffers, broadcaster):
        assert handler.handle("m1/system", b"{not json") is HandleOutcome.MALFORMED
        assert len(buffers[1]) == 0
        broadcaster.emit.assert_not_called()

    def test_wrong_shape_is_malformed(self, handler, buffers, broadcaster):
        assert handler.handle("m1/system", b"[1, 2, 3]") is HandleOutcome.MALFORMED
        assert len(buffers[1]) == 0
        # Parsed JSON is still relayed to live clients
        assert emitted(broadcaster)[0].metadata == {"raw": [1, 2, 3]}

    def test_unknown_topic_passthrough(self, handler, buffers, broadcaster):
        assert handler.handle("m1/sensors/reset", b'{"sensor": "scd41"}') is HandleOutcome.UNKNOWN
        assert handler.handle("m1/uptime", b"3600") is HandleOutcome.UNKNOWN
        assert handler.handle("m1/note", b"hello") is HandleOutcome.UNKNOWN

        first, second, third = emitted(broadcaster)
        assert first.metadata == {"sensor": "scd41"}
        assert second.value == 3600.0
        assert third.metadata == {"raw": "hello"}
        assert len(buffers[0]) == 0 and len(buffers[1]) == 0

    def test_device_log_relayed(self, handler, caplog):
        payload = orjson.dumps({"level": "warn", "msg": "SCD41 not responding"})
        with caplog.at_level(logging.INFO, logger="telemetry_ingest.device"):
            assert handler.handle("m1/logs", payload) is HandleOutcome.DEVICE_LOG

        [record] = [r for r in caplog.records if r.name == "telemetry_ingest.device"]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "[HARDWARE:m1] SCD41 not responding"
        assert record.direction == "IN"
        assert record.details["moduleId"] == "m1"


class TestHandlerNeverRaises:
    def test_broadcast_failure_contained(self, registry, buffers, clock):
        broadcaster = MagicMock()
        broadcaster.emit.side_effect = RuntimeError("loop closed")
        handler = MessageHandler(registry, buffers[0], buffers[1], broadcaster, clock=clock)

        assert handler.handle("m1/sht40/temperature", b"21.5") is HandleOutcome.BUFFERED

    def test_internal_error_becomes_outcome(self, registry, buffers, clock):
        status_buffer = MagicMock()
        status_buffer.push.side_effect = RuntimeError("boom")
        handler = MessageHandler(registry, buffers[0], status_buffer, None, clock=clock)

        assert handler.handle("m1/system", b'{"rssi": -50}') is HandleOutcome.ERROR


# =============================================================================
# END TO END
# =============================================================================

class TestEndToEnd:
    def test_pressure_reading_reaches_store(self, registry, repository, clock):
        measurement_buffer, status_buffer = IngestionBuffer("measurements", 100), IngestionBuffer("status", 50)
        handler = MessageHandler(registry, measurement_buffer, status_buffer, None, clock=clock)
        persister = BatchPersister(repository, registry, measurement_buffer, status_buffer)

        handler.handle("greenhouse/system/config", b'{"moduleType": "air-quality", "uptimeStart": 120}')
        handler.handle("greenhouse/bmp280/pressure", b"1013.25")
        handler.handle("greenhouse/bmp280/pressure", b"5000")

        assert persister.flush_status_updates() == 1
        assert persister.flush_measurements() == 1

        assert repository.get_last_measurement_time("greenhouse", "pressure", hardware_id="bmp280") == T0
        assert repository.get_module_type("greenhouse") == "air-quality"
        stamps = repository.get_measurement_timestamps_in_window(
            "greenhouse", "pressure", since=T0.replace(hour=11),
        )
        assert stamps == [T0]


# =============================================================================
# RETAINED CONFIG ECHO
# =============================================================================

class TestRetainedConfigEcho:
    @pytest.fixture
    def pipeline(self, repository, registry, clock):
        publisher = MagicMock()
        publisher.publish.return_value = True
        pipeline = TelemetryPipeline(repository, registry, publisher=publisher, clock=clock)
        repository.upsert_system_config(
            "m1", SystemConfigPayload.model_validate({"moduleType": "air-quality"}), None, T0,
        )
        return pipeline, publisher

    def _intervals(self, repository):
        return {c.sensor_type: c.interval_seconds for c in repository.get_sensor_configs("m1")}

    def test_own_config_not_persisted_back(self, pipeline, repository):
        pipeline, publisher = pipeline
        pipeline.config_publisher.apply_user_config("m1", {"scd41:co2": 60, "scd41:temperature": 120})
        topic, payload = publisher.publish.call_args.args

        outcome = pipeline.handler.handle(topic, orjson.dumps(payload))
        pipeline.persister.flush_status_updates()

        assert outcome is HandleOutcome.ECHO
        assert self._intervals(repository) == {"scd41:co2": 60, "scd41:temperature": 120}

    def test_retained_config_from_previous_run(self, pipeline, repository):
        pipeline, _ = pipeline
        repository.upsert_sensor_config("m1", "scd41:co2", 60, None, T0)
        repository.upsert_sensor_config("m1", "scd41:temperature", 120, None, T0)

        # Nothing published yet in this process: the message is buffered
        outcome = pipeline.handler.handle("m1/sensors/config", b'{"scd41": {"interval": 120}}')
        pipeline.persister.flush_status_updates()

        assert outcome is HandleOutcome.BUFFERED
        assert self._intervals(repository) == {"scd41:co2": 60, "scd41:temperature": 120}

    def test_device_config_still_applied(self, pipeline, repository):
        pipeline, _ = pipeline
        pipeline.config_publisher.apply_user_config("m1", {"scd41:co2": 60})

        outcome = pipeline.handler.handle("m1/sensors/config", b'{"scd41:co2": {"interval": 30}}')
        pipeline.persister.flush_status_updates()

        assert outcome is HandleOutcome.BUFFERED
        assert self._intervals(repository) == {"scd41:co2": 30}
