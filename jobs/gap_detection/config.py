"""Parámetros del job de detección de huecos."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GapJobConfig:
    """Configuración del job de detección de huecos."""
    interval_minutes: float = 15
    lookback_hours: float = 1
    once: bool = False
