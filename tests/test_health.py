"""Tests de clasificación de liveness, detección de huecos y uptime."""

from datetime import timedelta

import pytest

from telemetry_ingest.core.domain.measurement import Measurement
from telemetry_ingest.core.domain.repository import SensorStatusRow
from telemetry_ingest.health import (
    ConnectionStatus,
    HealthService,
    OverallStatus,
    SensorLiveness,
    classify_connection,
    classify_sensor,
    find_gaps,
)
from telemetry_ingest.health.gaps import average_uptime, sensor_uptime_percent
from telemetry_ingest.health.status import build_sensor_statuses, overall_status

from .conftest import T0


def ago(seconds: float):
    return T0 - timedelta(seconds=seconds)


# =============================================================================
# LIVENESS
# =============================================================================

class TestClassifySensor:
    @pytest.mark.parametrize(
        "elapsed,expected",
        [(30, SensorLiveness.OK), (130, SensorLiveness.OK), (131, SensorLiveness.MISSING), (150, SensorLiveness.MISSING)],
    )
    def test_two_tier_with_grace(self, elapsed, expected):
        # 60 s interval: timeout = 2 * 60 s + 10 s grace
        assert classify_sensor(ago(elapsed), 60, T0) is expected

    def test_never_seen_is_unknown(self):
        assert classify_sensor(None, 60, T0) is SensorLiveness.UNKNOWN

    def test_default_interval_when_unconfigured(self):
        assert classify_sensor(ago(100), None, T0) is SensorLiveness.OK
        assert classify_sensor(ago(140), None, T0) is SensorLiveness.MISSING


class TestClassifyConnection:
    @pytest.mark.parametrize(
        "elapsed,expected",
        [
            (30, ConnectionStatus.CONNECTED),
            (150, ConnectionStatus.STALE),
            (700, ConnectionStatus.OFFLINE),
        ],
    )
    def test_three_tier(self, elapsed, expected):
        assert classify_connection(ago(elapsed), 60, T0) is expected

    def test_never_seen_is_unknown(self):
        assert classify_connection(None, 60, T0) is ConnectionStatus.UNKNOWN

    def test_overall_status(self):
        c, s = ConnectionStatus.CONNECTED, ConnectionStatus.STALE
        assert overall_status([c, c]) is OverallStatus.HEALTHY
        assert overall_status([c, s]) is OverallStatus.DEGRADED
        assert overall_status([s, ConnectionStatus.OFFLINE]) is OverallStatus.OFFLINE
        assert overall_status([]) is OverallStatus.OFFLINE


class TestSensorStatusViews:
    def test_hardware_shares_newest_update(self):
        rows = [
            SensorStatusRow("m1", "scd41:co2", "ok", 600.0, ago(500)),
            SensorStatusRow("m1", "scd41:temperature", "ok", 21.0, ago(20)),
            SensorStatusRow("m1", "sgp40:voc", "ok", 100.0, ago(500)),
        ]
        views = {v.sensor_type: v for v in build_sensor_statuses(rows, {"scd41:co2": 60, "sgp40:voc": 60}, T0)}

        # co2 is stale on its own, but the same chip reported temperature recently
        assert views["scd41:co2"].status is SensorLiveness.OK
        assert views["scd41:temperature"].status is SensorLiveness.OK
        assert views["scd41:temperature"].interval_seconds == 60
        assert views["sgp40:voc"].status is SensorLiveness.MISSING
        assert views["sgp40:voc"].to_dict()["hardware"] == "sgp40"


# =============================================================================
# GAPS AND UPTIME
# =============================================================================

class TestFindGaps:
    def test_single_gap_between_readings(self):
        t600 = T0 + timedelta(seconds=600)
        gaps = find_gaps([T0, t600], 60, now=t600 + timedelta(seconds=30), hours=1,
                         sensor_type="temperature", hardware_id="sht40")
        assert len(gaps) == 1
        assert gaps[0].gap_start == T0
        assert gaps[0].gap_end == t600
        assert gaps[0].gap_duration_minutes == 10

    def test_empty_window_is_one_full_gap(self):
        [gap] = find_gaps([], 60, now=T0, hours=1, sensor_type="temperature", hardware_id="sht40")
        assert gap.gap_duration_minutes == 60
        assert gap.gap_start == T0 - timedelta(hours=1)
        assert gap.gap_end == T0

    def test_no_interval_no_gaps(self):
        assert find_gaps([], None, now=T0, hours=1, sensor_type="t", hardware_id="x") == []

    def test_tail_gap_until_now(self):
        now = T0 + timedelta(minutes=10)
        [gap] = find_gaps([T0], 60, now=now, hours=1, sensor_type="t", hardware_id="x")
        assert gap.gap_end == now
        assert gap.is_ongoing(now)

    def test_readings_within_tolerance(self):
        stamps = [T0 + timedelta(seconds=60 * i) for i in range(10)]
        now = stamps[-1] + timedelta(seconds=60)
        assert find_gaps(stamps, 60, now=now, hours=1, sensor_type="t", hardware_id="x") == []

    def test_uptime(self):
        [gap] = find_gaps([], 60, now=T0, hours=1, sensor_type="t", hardware_id="x")
        assert sensor_uptime_percent([gap], 1) == 0.0
        assert sensor_uptime_percent([], 1) == 100.0
        assert average_uptime([100.0, 0.0, 50.0]) == 50.0
        assert average_uptime([]) == 0.0


# =============================================================================
# HEALTH SERVICE
# =============================================================================

@pytest.fixture
def health(repository, clock):
    return HealthService(repository, clock=clock)


class TestHealthService:
    def _seed_regular(self, repository, minutes: int, hardware_id="sht40", sensor="temperature"):
        repository.upsert_measurements_batch([
            Measurement(T0 - timedelta(minutes=m), "m1", sensor, hardware_id, 21.0)
            for m in range(minutes)
        ])

    def test_detect_gaps_with_composite_key(self, repository, health):
        repository.upsert_sensor_config("m1", "sht40:temperature", 60, None, T0)
        # A different chip reporting the same measurement must not hide the gap
        self._seed_regular(repository, 60, hardware_id="scd41")

        [gap] = health.detect_gaps("m1", "sht40:temperature", hours=1)
        assert gap.hardware_id == "sht40"
        assert gap.gap_duration_minutes == 60

    def test_unconfigured_sensor_has_no_gaps(self, health):
        assert health.detect_gaps("m1", "sht40:temperature", hours=1) == []

    def test_device_health_healthy(self, repository, health):
        repository.upsert_sensor_config("m1", "sht40:temperature", 60, None, T0)
        self._seed_regular(repository, 60)

        report = health.get_device_health("m1", hours=1)
        assert report.overall_status is OverallStatus.HEALTHY
        assert report.uptime_percent_24h == 100.0
        [sensor] = report.sensors
        assert sensor.status is ConnectionStatus.CONNECTED
        assert sensor.gap_count == 0
        assert report.to_dict()["sensors"][0]["hardwareId"] == "sht40"

    def test_device_without_data_is_offline(self, repository, health):
        repository.upsert_sensor_config("m1", "sht40:temperature", 60, None, T0)

        report = health.get_device_health("m1", hours=1)
        assert report.overall_status is OverallStatus.OFFLINE
        assert report.uptime_percent_24h == 0.0
        assert report.sensors[0].status is ConnectionStatus.UNKNOWN

    def test_unhealthy_devices(self, repository, health):
        repository.upsert_sensor_config("m1", "sht40:temperature", 60, None, T0)
        self._seed_regular(repository, 60)
        repository.upsert_sensor_config("m2", "sht40:temperature", 60, None, T0)

        assert health.get_unhealthy_devices() == [{"moduleId": "m2", "status": "offline"}]
