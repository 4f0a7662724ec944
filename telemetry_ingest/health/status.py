"""Clasificación de actividad a partir del último dato recibido.

Los módulos no mandan heartbeat explícito. Un sensor se considera vivo
mientras sigan llegando datos dentro de un múltiplo de su intervalo de
reporte configurado.

Se exponen dos clasificaciones:
- dos niveles (``ok`` / ``missing`` / ``unknown``) para la vista de estado
  por sensor, con 10 s fijos de gracia por jitter del transporte;
- tres niveles (``connected`` / ``stale`` / ``offline``, más ``unknown``
  si nunca se recibió nada) para los resúmenes de salud.

Todas las funciones son puras; ``now`` siempre se recibe como argumento.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.domain.repository import SensorStatusRow
from ..core.domain.sensor_keys import hardware_key

DEFAULT_INTERVAL_SECONDS = 60
GRACE_PERIOD_MS = 10_000
STALE_FACTOR = 2
OFFLINE_FACTOR = 5


class SensorLiveness(str, Enum):
    OK = "ok"
    MISSING = "missing"
    UNKNOWN = "unknown"


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    STALE = "stale"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    OFFLINE = "offline"


def _interval_ms(interval_seconds: Optional[int]) -> int:
    return (interval_seconds or DEFAULT_INTERVAL_SECONDS) * 1000


def _elapsed_ms(last_update: datetime, now: datetime) -> float:
    return (now - last_update).total_seconds() * 1000


def sensor_timeout_ms(interval_seconds: Optional[int]) -> int:
    return 2 * _interval_ms(interval_seconds) + GRACE_PERIOD_MS


def classify_sensor(
    last_update: Optional[datetime],
    interval_seconds: Optional[int],
    now: datetime,
) -> SensorLiveness:
    """Dos niveles: ``missing`` una vez pasados 2x intervalo + gracia."""
    if last_update is None:
        return SensorLiveness.UNKNOWN
    if _elapsed_ms(last_update, now) > sensor_timeout_ms(interval_seconds):
        return SensorLiveness.MISSING
    return SensorLiveness.OK


def classify_connection(
    last_update: Optional[datetime],
    interval_seconds: Optional[int],
    now: datetime,
) -> ConnectionStatus:
    """Tres niveles: connected por debajo de 2x intervalo, stale por debajo de 5x."""
    if last_update is None:
        return ConnectionStatus.UNKNOWN
    elapsed = _elapsed_ms(last_update, now)
    interval = _interval_ms(interval_seconds)
    if elapsed < interval * STALE_FACTOR:
        return ConnectionStatus.CONNECTED
    if elapsed < interval * OFFLINE_FACTOR:
        return ConnectionStatus.STALE
    return ConnectionStatus.OFFLINE


def overall_status(statuses: Sequence[ConnectionStatus]) -> OverallStatus:
    if not statuses:
        return OverallStatus.OFFLINE
    connected = sum(1 for s in statuses if s is ConnectionStatus.CONNECTED)
    if connected == len(statuses):
        return OverallStatus.HEALTHY
    if connected > 0:
        return OverallStatus.DEGRADED
    return OverallStatus.OFFLINE


def latest_update_by_hardware(rows: Iterable[SensorStatusRow]) -> Dict[str, datetime]:
    """``updated_at`` más reciente por clave de hardware (prefijo antes de ':').

    Una medición viva de un componente basta para considerar vivo todo el componente.
    """
    latest: Dict[str, datetime] = {}
    for row in rows:
        if row.updated_at is None:
            continue
        key = hardware_key(row.sensor_type)
        current = latest.get(key)
        if current is None or row.updated_at > current:
            latest[key] = row.updated_at
    return latest


def interval_by_hardware(intervals: Mapping[str, Optional[int]]) -> Dict[str, Optional[int]]:
    """Intervalo de reporte por clave de hardware, desde las filas de config por sensor."""
    by_hardware: Dict[str, Optional[int]] = {}
    for sensor_key, interval in intervals.items():
        key = hardware_key(sensor_key)
        if interval is not None or key not in by_hardware:
            by_hardware[key] = interval
    return by_hardware


@dataclass
class SensorStatusView:
    sensor_type: str
    hardware: str
    status: SensorLiveness
    value: Optional[float]
    reported_status: Optional[str]
    last_update: Optional[datetime]
    interval_seconds: Optional[int]

    def to_dict(self) -> dict:
        return {
            "sensorType": self.sensor_type,
            "hardware": self.hardware,
            "status": self.status.value,
            "value": self.value,
            "reportedStatus": self.reported_status,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
            "intervalSeconds": self.interval_seconds,
        }


def build_sensor_statuses(
    rows: Sequence[SensorStatusRow],
    intervals: Mapping[str, Optional[int]],
    now: datetime,
) -> List[SensorStatusView]:
    """Estado de dos niveles por sensor, juzgado sobre su componente de hardware.

    Los sensores del mismo hardware comparten actividad: el update más
    reciente entre ellos contra el intervalo del hardware.
    """
    latest = latest_update_by_hardware(rows)
    hw_intervals = interval_by_hardware(intervals)

    views: List[SensorStatusView] = []
    for row in rows:
        key = hardware_key(row.sensor_type)
        interval = intervals.get(row.sensor_type) or hw_intervals.get(key)
        views.append(SensorStatusView(
            sensor_type=row.sensor_type,
            hardware=key,
            status=classify_sensor(latest.get(key), interval, now),
            value=row.value,
            reported_status=row.status,
            last_update=row.updated_at,
            interval_seconds=interval,
        ))
    return views
