from .gaps import DataGap, find_gaps
from .service import DATA_GAP_CATEGORY, DeviceHealth, HealthService
from .status import (
    ConnectionStatus,
    OverallStatus,
    SensorLiveness,
    classify_connection,
    classify_sensor,
)

__all__ = [
    "DATA_GAP_CATEGORY",
    "ConnectionStatus",
    "DataGap",
    "DeviceHealth",
    "HealthService",
    "OverallStatus",
    "SensorLiveness",
    "classify_connection",
    "classify_sensor",
    "find_gaps",
]
