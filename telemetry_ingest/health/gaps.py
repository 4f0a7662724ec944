"""Detección de huecos de datos y uptime sobre una ventana hacia atrás.

Un hueco es cualquier tramo sin mediciones más largo que 3x el intervalo de
reporte configurado: entre dos mediciones consecutivas, o desde la última
hasta ahora. Una ventana vacía es un único hueco que la cubre entera.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

GAP_TOLERANCE_FACTOR = 3


@dataclass(frozen=True)
class DataGap:
    sensor_type: str
    hardware_id: str
    gap_start: datetime
    gap_end: datetime
    gap_duration_minutes: int
    expected_interval_seconds: int

    def is_ongoing(self, now: datetime) -> bool:
        """El hueco llega hasta "ahora": ninguna medición dentro de un intervalo más."""
        return (now - self.gap_end).total_seconds() < self.expected_interval_seconds

    def to_dict(self) -> dict:
        return {
            "sensorType": self.sensor_type,
            "hardwareId": self.hardware_id,
            "gapStart": self.gap_start.isoformat(),
            "gapEnd": self.gap_end.isoformat(),
            "gapDurationMinutes": self.gap_duration_minutes,
            "expectedIntervalSeconds": self.expected_interval_seconds,
        }


def _minutes(delta: timedelta) -> int:
    # Half-up rounding to whole minutes
    return int(delta.total_seconds() / 60 + 0.5)


def find_gaps(
    timestamps: Sequence[datetime],
    interval_seconds: Optional[int],
    now: datetime,
    hours: float,
    sensor_type: str,
    hardware_id: str,
) -> List[DataGap]:
    """Huecos en `timestamps` (ascendentes, dentro de la ventana) hasta `now`."""
    if not interval_seconds:
        return []

    window_start = now - timedelta(hours=hours)
    tolerance = timedelta(seconds=interval_seconds * GAP_TOLERANCE_FACTOR)

    def gap(start: datetime, end: datetime, minutes: int) -> DataGap:
        return DataGap(
            sensor_type=sensor_type,
            hardware_id=hardware_id,
            gap_start=start,
            gap_end=end,
            gap_duration_minutes=minutes,
            expected_interval_seconds=interval_seconds,
        )

    if not timestamps:
        return [gap(window_start, now, int(round(hours * 60)))]

    gaps: List[DataGap] = []
    for current, following in zip(timestamps, timestamps[1:]):
        if following - current > tolerance:
            gaps.append(gap(current, following, _minutes(following - current)))

    last = timestamps[-1]
    if now - last > tolerance:
        gaps.append(gap(last, now, _minutes(now - last)))

    return gaps


def sensor_uptime_percent(gaps: Sequence[DataGap], hours: float) -> float:
    total_minutes = hours * 60
    if total_minutes <= 0:
        return 0.0
    gap_minutes = sum(g.gap_duration_minutes for g in gaps)
    return max(0.0, min(100.0, (total_minutes - gap_minutes) / total_minutes * 100))


def average_uptime(per_sensor: Sequence[float]) -> float:
    """Promedio de uptime por sensor, con un decimal. Sin sensores es 0."""
    if not per_sensor:
        return 0.0
    return round(sum(per_sensor) / len(per_sensor), 1)
