"""Registry de manifests de módulos.

Un manifest describe un tipo de módulo: sus componentes de hardware, los
sensores canónicos que mide (con el rango aceptado en la ingesta) y las
acciones que puede disparar el dashboard.

Los manifests son archivos JSON que se cargan una vez al arrancar, como
``<dir>/<type>.json`` o ``<dir>/<type>/manifest.json``. Una vez cargado, el
registry es de sólo lectura y se puede compartir entre threads.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.domain.sensor_keys import composite_key, is_composite

logger = logging.getLogger(__name__)

DEFAULT_MANIFESTS_DIR = Path(__file__).resolve().parent / "manifests"


class SensorRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class SensorDef(BaseModel):
    key: str
    label: str
    unit: str = ""
    range: SensorRange


class HardwareDef(BaseModel):
    key: str
    name: str
    type: Literal["sensor", "actuator"] = "sensor"
    sensors: List[str] = Field(default_factory=list)


class ActionDef(BaseModel):
    id: str
    label: str
    icon: str = ""
    scope: Literal["sensor", "hardware", "device"] = "device"


class ModuleManifest(BaseModel):
    id: str
    name: str
    version: str = "1.0.0"
    hardware: List[HardwareDef] = Field(default_factory=list)
    sensors: List[SensorDef] = Field(default_factory=list)
    actions: List[ActionDef] = Field(default_factory=list)

    def get_hardware(self, hardware_id: str) -> Optional[HardwareDef]:
        for hw in self.hardware:
            if hw.key == hardware_id:
                return hw
        return None


class ManifestRegistry:
    """Consulta de sólo lectura sobre los manifests cargados."""

    def __init__(self, manifests: Optional[Iterable[ModuleManifest]] = None):
        self._manifests: Dict[str, ModuleManifest] = {}
        self._loaded = False
        if manifests is not None:
            for manifest in manifests:
                self._manifests[manifest.id] = manifest
            self._loaded = True

    def load_all(self, directory: Optional[Path | str] = None) -> int:
        """Carga todos los manifests de `directory`. Las llamadas siguientes no hacen nada."""
        if self._loaded:
            return len(self._manifests)

        root = Path(directory) if directory else DEFAULT_MANIFESTS_DIR
        if not root.is_dir():
            logger.error("[REGISTRY] Manifests directory not found: %s", root)
            self._loaded = True
            return 0

        paths = sorted(root.glob("*.json")) + sorted(root.glob("*/manifest.json"))
        for path in paths:
            try:
                manifest = ModuleManifest.model_validate(orjson.loads(path.read_bytes()))
            except (OSError, orjson.JSONDecodeError, ValidationError) as e:
                logger.error("[REGISTRY] Failed to load manifest %s: %s", path, e)
                continue
            self._manifests[manifest.id] = manifest

        self._loaded = True
        logger.info("[REGISTRY] Loaded %d module manifest(s): %s", len(self._manifests), ", ".join(self._manifests))
        return len(self._manifests)

    def get_manifest(self, module_type: Optional[str]) -> Optional[ModuleManifest]:
        if not module_type:
            return None
        return self._manifests.get(module_type)

    def get_all_manifests(self) -> List[ModuleManifest]:
        return list(self._manifests.values())

    def get_module_types(self) -> List[str]:
        return list(self._manifests)

    def get_sensor_def(self, sensor_type: str) -> Optional[SensorDef]:
        """Primera definición de sensor con esta clave canónica, en todos los manifests."""
        for manifest in self._manifests.values():
            for sensor in manifest.sensors:
                if sensor.key == sensor_type:
                    return sensor
        return None

    def get_validation_range(self, sensor_type: str) -> Optional[SensorRange]:
        sensor = self.get_sensor_def(sensor_type)
        return sensor.range if sensor else None

    def is_known_hardware(self, module_type: Optional[str], hardware_id: str) -> bool:
        manifest = self.get_manifest(module_type)
        return manifest is not None and manifest.get_hardware(hardware_id) is not None

    def expand_sensor_key(self, module_type: Optional[str], sensor_key: str) -> List[str]:
        """Expande una clave de hardware (``sht40``) a sus claves compuestas de sensor.

        Las claves compuestas, las canónicas desnudas y las de hardware que el
        manifest no lista se devuelven sin cambios.
        """
        if is_composite(sensor_key):
            return [sensor_key]
        manifest = self.get_manifest(module_type)
        hw = manifest.get_hardware(sensor_key) if manifest else None
        if hw is None or not hw.sensors:
            return [sensor_key]
        return [composite_key(hw.key, measurement) for measurement in hw.sensors]
