from .device_repository import SqlDeviceRepository
from .postgres_setup import UnsupportedDialectError, ensure_schema
from .telemetry_repository import SqlTelemetryRepository

__all__ = [
    "SqlDeviceRepository",
    "SqlTelemetryRepository",
    "UnsupportedDialectError",
    "ensure_schema",
]
