"""Tests del registry de manifests y de la gestión de zonas/preferencias."""

import orjson

from telemetry_ingest.core.domain.status_updates import SystemConfigPayload
from telemetry_ingest.registry import ManifestRegistry

from .conftest import T0


# =============================================================================
# MANIFEST REGISTRY
# =============================================================================

class TestManifestRegistry:
    def test_bundled_manifests(self, registry):
        assert set(registry.get_module_types()) >= {"air-quality", "lighting"}
        manifest = registry.get_manifest("air-quality")
        assert manifest.get_hardware("scd41").sensors == ["co2", "temperature", "humidity"]

    def test_validation_range(self, registry):
        temperature = registry.get_validation_range("temperature")
        assert (temperature.min, temperature.max) == (-40, 85)
        assert registry.get_validation_range("radiation") is None

    def test_expand_hardware_key(self, registry):
        assert registry.expand_sensor_key("air-quality", "sht40") == ["sht40:temperature", "sht40:humidity"]

    def test_expand_leaves_other_keys(self, registry):
        assert registry.expand_sensor_key("air-quality", "sht40:temperature") == ["sht40:temperature"]
        assert registry.expand_sensor_key("air-quality", "bme680") == ["bme680"]
        assert registry.expand_sensor_key(None, "sht40") == ["sht40"]

    def test_known_hardware(self, registry):
        assert registry.is_known_hardware("air-quality", "mq7")
        assert not registry.is_known_hardware("air-quality", "bh1750")
        assert not registry.is_known_hardware("unknown-type", "mq7")

    def test_load_from_directory(self, tmp_path):
        (tmp_path / "pump.json").write_bytes(orjson.dumps({
            "id": "pump",
            "name": "Pump",
            "hardware": [{"key": "flow1", "name": "Flow", "sensors": ["flow"]}],
            "sensors": [{"key": "flow", "label": "Flow", "unit": "l/min", "range": {"min": 0, "max": 50}}],
        }))
        (tmp_path / "valve").mkdir()
        (tmp_path / "valve" / "manifest.json").write_bytes(orjson.dumps({"id": "valve", "name": "Valve"}))
        (tmp_path / "broken.json").write_text("{ not json")

        registry = ManifestRegistry()
        assert registry.load_all(tmp_path) == 2
        assert registry.get_validation_range("flow").max == 50
        # Loading is one-shot
        assert registry.load_all(tmp_path / "elsewhere") == 2

    def test_missing_directory(self, tmp_path):
        assert ManifestRegistry().load_all(tmp_path / "nope") == 0


# =============================================================================
# DEVICE REPOSITORY
# =============================================================================

def _register(repository, module_id="m1"):
    repository.upsert_system_config(module_id, SystemConfigPayload(), None, T0)


class TestDeviceRepository:
    def test_preferences_merge(self, repository, device_repository):
        _register(repository)
        device_repository.update_preferences("m1", {"color": "green", "pinned": True})
        merged = device_repository.update_preferences("m1", {"color": "blue"})

        assert merged == {"color": "blue", "pinned": True}
        assert repository.get_module_info("m1").preferences == merged

    def test_preferences_unknown_module(self, device_repository):
        assert device_repository.update_preferences("ghost", {"a": 1}) is None

    def test_zone_lifecycle(self, repository, device_repository):
        _register(repository)
        zone_id = device_repository.create_zone("Greenhouse", "North wing")

        assert device_repository.assign_zone("m1", zone_id)
        assert repository.get_module_info("m1").zone_id == zone_id

        assert device_repository.delete_zone(zone_id)
        assert repository.get_module_info("m1").zone_id is None
        assert repository.get_module_info("m1") is not None
        assert not device_repository.delete_zone(zone_id)

    def test_rename(self, repository, device_repository):
        _register(repository)
        assert device_repository.rename_module("m1", "Kitchen sensor")
        assert repository.get_module_info("m1").name == "Kitchen sensor"
        assert not device_repository.rename_module("ghost", "x")
