"""Detección periódica de huecos de datos abiertos."""

from .config import GapJobConfig
from .runner import GapDetectionJob

__all__ = ["GapDetectionJob", "GapJobConfig"]
