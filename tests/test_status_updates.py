"""Tests de decodificación de payloads de estado a StatusUpdate tipados."""

from datetime import timedelta

import pytest

from telemetry_ingest.core.domain.measurement import MessageCategory
from telemetry_ingest.core.domain.status_updates import (
    HardwarePayload,
    PayloadDecodeError,
    SensorsConfigPayload,
    SensorsStatusPayload,
    StatusUpdateType,
    SystemConfigPayload,
    SystemPayload,
    decode_status_updates,
)

from .conftest import T0


def decode(category, data):
    return decode_status_updates("m1", category, data, T0)


class TestSystemPayloads:
    def test_system_heartbeat(self):
        [update] = decode(MessageCategory.SYSTEM, {"rssi": -61, "memory": {"heapFreeKb": 120}})
        assert update.type is StatusUpdateType.SYSTEM
        assert isinstance(update.data, SystemPayload)
        assert update.data.rssi == -61
        assert update.data.memory.heap_free_kb == 120
        assert update.received_at == T0

    def test_system_config_booted_at_from_uptime(self):
        [update] = decode(
            MessageCategory.SYSTEM_CONFIG,
            {"moduleType": "air-quality", "ip": "10.0.0.7", "uptimeStart": 3600},
        )
        data = update.data
        assert isinstance(data, SystemConfigPayload)
        assert data.module_type == "air-quality"
        assert data.booted_at(T0) == T0 - timedelta(hours=1)

    @pytest.mark.parametrize("uptime", [-5, "soon", 1.5, None])
    def test_invalid_uptime_gives_no_boot_time(self, uptime):
        [update] = decode(MessageCategory.SYSTEM_CONFIG, {"uptimeStart": uptime})
        assert update.data.uptime_start is None
        assert update.data.booted_at(T0) is None

    def test_flash_total_falls_back_to_system_kb(self):
        [update] = decode(MessageCategory.SYSTEM_CONFIG, {"flash": {"usedKb": 100, "systemKb": 4096}})
        assert update.data.flash.reported_total_kb == 4096

    def test_unknown_fields_ignored(self):
        [update] = decode(MessageCategory.SYSTEM, {"rssi": -70, "firmware": "2.1.0"})
        assert update.data.rssi == -70


class TestSensorPayloads:
    def test_flat_sensors_status(self):
        [update] = decode(
            MessageCategory.SENSORS_STATUS,
            {"sht40:temperature": {"status": "ok", "value": 21.5}},
        )
        assert isinstance(update.data, SensorsStatusPayload)
        assert update.data.root["sht40:temperature"].value == 21.5

    def test_nested_sensors_status_carries_module_type(self):
        updates = decode(
            MessageCategory.SENSORS_STATUS,
            {
                "moduleId": "m1",
                "moduleType": "air-quality",
                "sensors": {"scd41:co2": {"status": "ok", "value": 612}},
            },
        )
        assert [u.type for u in updates] == [StatusUpdateType.SYSTEM_CONFIG, StatusUpdateType.SENSORS_STATUS]
        assert updates[0].data.module_type == "air-quality"
        assert updates[0].data.ip is None
        assert list(updates[1].data.root) == ["scd41:co2"]

    def test_nested_sensors_status_without_module_type(self):
        updates = decode(MessageCategory.SENSORS_STATUS, {"sensors": {"sgp40:voc": {"status": "warming"}}})
        assert [u.type for u in updates] == [StatusUpdateType.SENSORS_STATUS]

    def test_sensors_config_wrapper_unwrapped(self):
        [update] = decode(MessageCategory.SENSORS_CONFIG, {"sensors": {"sht40": {"interval": 30}}})
        assert isinstance(update.data, SensorsConfigPayload)
        assert update.data.root["sht40"].interval == 30

    @pytest.mark.parametrize("interval", [0, -10, 2.5, "fast"])
    def test_invalid_interval_dropped(self, interval):
        [update] = decode(MessageCategory.SENSORS_CONFIG, {"sht40": {"interval": interval, "model": "SHT40"}})
        entry = update.data.root["sht40"]
        assert entry.interval is None
        assert entry.model == "SHT40"

    def test_hardware_config(self):
        [update] = decode(
            MessageCategory.HARDWARE_CONFIG,
            {"chip": {"model": "ESP32-S3", "rev": 2, "cpuFreqMhz": 240, "cores": 2}},
        )
        assert update.type is StatusUpdateType.HARDWARE
        assert isinstance(update.data, HardwarePayload)
        assert update.data.chip.cpu_freq_mhz == 240


class TestMalformedPayloads:
    @pytest.mark.parametrize("data", [[1, 2], "ok", 42, None])
    def test_non_object_rejected(self, data):
        with pytest.raises(PayloadDecodeError):
            decode(MessageCategory.SYSTEM, data)

    def test_wrong_shape_rejected(self):
        with pytest.raises(PayloadDecodeError):
            decode(MessageCategory.SENSORS_STATUS, {"sht40:temperature": "ok"})

    def test_measurement_category_carries_no_status(self):
        with pytest.raises(PayloadDecodeError):
            decode(MessageCategory.MEASUREMENT, {})
