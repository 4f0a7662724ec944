"""Tests de parsing de topics, nombres canónicos y validación de rangos.

Ejecutar:
    pytest tests/test_topics_and_validators.py -v
"""

import math

import pytest

from telemetry_ingest.core.domain.measurement import MessageCategory
from telemetry_ingest.mqtt.canonical import get_canonical_sensor_type
from telemetry_ingest.mqtt.topics import classify_message, parse_topic
from telemetry_ingest.mqtt.validators import (
    parse_measurement,
    parse_numeric_payload,
    validate_value,
)

from .conftest import T0


def _classify(topic: str) -> MessageCategory:
    parts = parse_topic(topic)
    assert parts is not None
    return classify_message(topic, parts)


# =============================================================================
# TOPIC PARSER
# =============================================================================

class TestParseTopic:
    def test_measurement_topic_parts(self):
        parts = parse_topic("greenhouse/bmp280/pressure")
        assert parts.module_id == "greenhouse"
        assert parts.category == "bmp280"
        assert parts.sensor_type == "pressure"
        assert parts.parts == ("greenhouse", "bmp280", "pressure")

    def test_two_part_topic_has_no_sensor_type(self):
        parts = parse_topic("greenhouse/system")
        assert parts.category == "system"
        assert parts.sensor_type is None

    @pytest.mark.parametrize("topic", ["greenhouse", ""])
    def test_single_segment_rejected(self, topic):
        assert parse_topic(topic) is None

    @pytest.mark.parametrize(
        "topic",
        ["home/sht40/temperature", "homelab/system", "dev-board/system", "test-module/sht40/temperature"],
    )
    def test_development_modules_rejected(self, topic):
        assert parse_topic(topic) is None


# =============================================================================
# MESSAGE CLASSIFIER
# =============================================================================

class TestClassifyMessage:
    @pytest.mark.parametrize(
        "topic,expected",
        [
            ("m1/system", MessageCategory.SYSTEM),
            ("m1/system/config", MessageCategory.SYSTEM_CONFIG),
            ("m1/sensors/status", MessageCategory.SENSORS_STATUS),
            ("m1/sensors/config", MessageCategory.SENSORS_CONFIG),
            ("m1/hardware/config", MessageCategory.HARDWARE_CONFIG),
            ("m1/logs", MessageCategory.LOGS),
            ("m1/sht40/temperature", MessageCategory.MEASUREMENT),
        ],
    )
    def test_known_categories(self, topic, expected):
        assert _classify(topic) is expected

    @pytest.mark.parametrize(
        "topic",
        ["m1/sensors/reset", "m1/system/reboot", "m1/hardware/info", "m1/foo", "m1/a/b/c"],
    )
    def test_unknown_topics(self, topic):
        assert _classify(topic) is MessageCategory.UNKNOWN

    def test_json_flag(self):
        assert MessageCategory.SYSTEM.is_json
        assert not MessageCategory.MEASUREMENT.is_json
        assert not MessageCategory.UNKNOWN.is_json


# =============================================================================
# CANONICAL MAPPER
# =============================================================================

class TestCanonicalMapper:
    def test_known_hardware_measurement(self):
        assert get_canonical_sensor_type("scd41", "co2") == "co2"
        assert get_canonical_sensor_type("sps30", "pm25") == "pm25"

    def test_unknown_hardware_passthrough(self):
        assert get_canonical_sensor_type("bme680", "gas") == "gas"

    def test_unknown_measurement_passthrough(self):
        assert get_canonical_sensor_type("sht40", "dewpoint") == "dewpoint"

    def test_lookup_is_exact_match(self):
        assert get_canonical_sensor_type("SHT40", "Temperature") == "Temperature"


# =============================================================================
# VALUE VALIDATOR
# =============================================================================

class TestValidateValue:
    @pytest.mark.parametrize("value", [-40.0, 0.0, 85.0])
    def test_temperature_bounds_are_inclusive(self, registry, value):
        assert validate_value("temperature", value, registry.get_validation_range).valid

    @pytest.mark.parametrize("value", [-40.01, 85.01])
    def test_temperature_outside_bounds(self, registry, value):
        result = validate_value("temperature", value, registry.get_validation_range)
        assert result.valid is False
        assert result.range.min == -40
        assert result.range.max == 85
        assert "out of range" in result.reason

    def test_unknown_sensor_type_is_accepted(self, registry):
        assert validate_value("radiation", 1e9, registry.get_validation_range).valid


class TestParseMeasurement:
    def test_numeric_payload(self):
        m = parse_measurement(parse_topic("greenhouse/bmp280/pressure"), b"1013.25", T0)
        assert m.module_id == "greenhouse"
        assert m.hardware_id == "bmp280"
        assert m.sensor_type == "pressure"
        assert m.value == 1013.25
        assert m.time == T0

    @pytest.mark.parametrize("payload", [b"abc", b"", b"nan", b"inf", b"\xff\xfe"])
    def test_non_numeric_payload(self, payload):
        assert parse_measurement(parse_topic("m1/sht40/temperature"), payload, T0) is None

    def test_whitespace_tolerated(self):
        assert parse_numeric_payload(" 21.5\n") == 21.5

    def test_finite_only(self):
        assert parse_numeric_payload("1e400") is None
        assert not math.isnan(parse_numeric_payload("-0.0"))
