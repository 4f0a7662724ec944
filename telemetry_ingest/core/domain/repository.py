"""Interfaz abstracta de persistencia de telemetría.

El pipeline de ingesta, el motor de salud y el publicador de config sólo
hablan con esta interfaz. `SqlTelemetryRepository` la implementa sobre
PostgreSQL / TimescaleDB (y SQLite en tests).

Todo ``upsert_*`` de estado (todos menos mediciones) crea la fila del módulo
si todavía no existe: los módulos se registran implícitamente con su primer
mensaje de estado.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .measurement import Measurement
from .status_updates import ChipInfo, SystemConfigPayload, SystemPayload


@dataclass(frozen=True)
class SensorConfigRow:
    module_id: str
    sensor_type: str
    interval_seconds: Optional[int]
    model: Optional[str]
    enabled: bool = True


@dataclass(frozen=True)
class SensorStatusRow:
    module_id: str
    sensor_type: str
    status: Optional[str]
    value: Optional[float]
    updated_at: Optional[datetime]


@dataclass
class SystemLogEntry:
    """Fila de la tabla append-only system_logs."""
    category: str
    level: str
    msg: str
    time: datetime
    source: str = "SYSTEM"
    direction: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    id: Optional[str] = None


@dataclass
class ModuleSystemInfo:
    """Snapshot de device_system_status de un módulo."""
    module_id: str
    name: Optional[str] = None
    module_type: Optional[str] = None
    zone_id: Optional[str] = None
    ip: Optional[str] = None
    mac: Optional[str] = None
    booted_at: Optional[datetime] = None
    rssi: Optional[int] = None
    flash_used_kb: Optional[int] = None
    flash_free_kb: Optional[int] = None
    flash_system_kb: Optional[int] = None
    heap_total_kb: Optional[int] = None
    heap_free_kb: Optional[int] = None
    heap_min_free_kb: Optional[int] = None
    updated_at: Optional[datetime] = None
    preferences: Dict[str, Any] = field(default_factory=dict)


class TelemetryRepository(ABC):
    """Contrato de almacenamiento de mediciones y estado de dispositivos."""

    # -- writes ------------------------------------------------------------

    @abstractmethod
    def upsert_measurements_batch(self, measurements: Sequence[Measurement]) -> None:
        """Inserta un lote; ante conflicto de clave sólo se sobrescribe `value`.

        Debe ser atómico: se guarda el lote completo o se lanza una excepción
        y no se guarda nada.
        """

    @abstractmethod
    def upsert_system_status(self, module_id: str, data: SystemPayload, updated_at: datetime) -> None:
        """RSSI siempre se sobrescribe; los campos de heap conservan el valor previo si faltan."""

    @abstractmethod
    def upsert_system_config(
        self,
        module_id: str,
        data: SystemConfigPayload,
        booted_at: Optional[datetime],
        updated_at: datetime,
    ) -> None:
        """Cada campo conserva el valor guardado si el payload lo omite."""

    @abstractmethod
    def upsert_sensor_status(
        self,
        module_id: str,
        sensor_type: str,
        status: Optional[str],
        value: Optional[float],
        updated_at: datetime,
    ) -> None:
        ...

    @abstractmethod
    def upsert_sensor_config(
        self,
        module_id: str,
        sensor_type: str,
        interval_seconds: Optional[int],
        model: Optional[str],
        updated_at: datetime,
        enabled: Optional[bool] = None,
    ) -> None:
        """Los argumentos None conservan los valores guardados."""

    @abstractmethod
    def upsert_hardware(self, module_id: str, chip: Optional[ChipInfo], updated_at: datetime) -> None:
        """Sobrescribe completo el registro de hardware."""

    @abstractmethod
    def insert_system_log(self, entries: Sequence[SystemLogEntry]) -> None:
        ...

    # -- reads -------------------------------------------------------------

    @abstractmethod
    def get_enabled_sensor_configs_by_module(self) -> Dict[str, Dict[str, Optional[int]]]:
        """``{module_id: {sensor_type: interval_seconds}}`` de las filas habilitadas."""

    @abstractmethod
    def get_sensor_configs(self, module_id: str, enabled_only: bool = True) -> List[SensorConfigRow]:
        ...

    @abstractmethod
    def get_sensor_config(self, module_id: str, sensor_type: str) -> Optional[SensorConfigRow]:
        ...

    @abstractmethod
    def get_sensor_statuses(self, module_id: str) -> List[SensorStatusRow]:
        ...

    @abstractmethod
    def get_last_measurement_time(
        self,
        module_id: str,
        sensor_type: str,
        hardware_id: Optional[str] = None,
    ) -> Optional[datetime]:
        ...

    @abstractmethod
    def get_measurement_timestamps_in_window(
        self,
        module_id: str,
        sensor_type: str,
        since: datetime,
        hardware_id: Optional[str] = None,
    ) -> List[datetime]:
        """Timestamps ascendentes con ``time > since``."""

    @abstractmethod
    def get_module_type(self, module_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def get_module_info(self, module_id: str) -> Optional[ModuleSystemInfo]:
        ...

    @abstractmethod
    def list_module_ids(self) -> List[str]:
        ...

    @abstractmethod
    def get_system_logs(
        self,
        category: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[SystemLogEntry]:
        ...

    # -- lifecycle ---------------------------------------------------------

    @abstractmethod
    def delete_module(self, module_id: str) -> bool:
        """Borra el módulo y todo lo asociado a él. False si no existe."""

    def ping(self) -> Tuple[bool, Optional[str]]:
        """(accesible, error). Las implementaciones lo sobrescriben si pueden comprobarlo."""
        return True, None
