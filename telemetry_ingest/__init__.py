"""Servicio de ingesta de telemetría de módulos de sensores."""

__version__ = "0.4.0"
