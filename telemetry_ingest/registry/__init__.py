from .manifest_registry import (
    ActionDef,
    HardwareDef,
    ManifestRegistry,
    ModuleManifest,
    SensorDef,
    SensorRange,
)

__all__ = [
    "ActionDef",
    "HardwareDef",
    "ManifestRegistry",
    "ModuleManifest",
    "SensorDef",
    "SensorRange",
]
