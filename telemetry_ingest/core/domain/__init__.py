from .measurement import Measurement, MessageCategory, TopicParts
from .repository import (
    ModuleSystemInfo,
    SensorConfigRow,
    SensorStatusRow,
    SystemLogEntry,
    TelemetryRepository,
)
from .status_updates import (
    PayloadDecodeError,
    StatusUpdate,
    StatusUpdateType,
    decode_status_updates,
)

__all__ = [
    "Measurement",
    "MessageCategory",
    "TopicParts",
    "ModuleSystemInfo",
    "SensorConfigRow",
    "SensorStatusRow",
    "SystemLogEntry",
    "TelemetryRepository",
    "PayloadDecodeError",
    "StatusUpdate",
    "StatusUpdateType",
    "decode_status_updates",
]
