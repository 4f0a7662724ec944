"""Gestión de dispositivos del lado del operador: zonas, nombres y preferencias.

La ingesta nunca escribe por este módulo; sólo cambia campos que los
mensajes de estado no traen.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from .tables import device_system_status, zones

logger = logging.getLogger(__name__)


class SqlDeviceRepository:
    def __init__(self, engine: Engine):
        self._engine = engine

    def create_zone(self, name: str, description: Optional[str] = None) -> str:
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(zones).values(name=name, description=description, created_at=datetime.now(timezone.utc))
            )
            zone_id = result.inserted_primary_key[0]
        logger.info("[DB] Created zone %s (%s)", zone_id, name)
        return zone_id

    def delete_zone(self, zone_id: str) -> bool:
        """Borra una zona; sus módulos quedan sin asignar."""
        with self._engine.begin() as conn:
            conn.execute(
                update(device_system_status)
                .where(device_system_status.c.zone_id == zone_id)
                .values(zone_id=None)
            )
            result = conn.execute(delete(zones).where(zones.c.id == zone_id))
        return (result.rowcount or 0) > 0

    def assign_zone(self, module_id: str, zone_id: Optional[str]) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(device_system_status)
                .where(device_system_status.c.module_id == module_id)
                .values(zone_id=zone_id)
            )
        return (result.rowcount or 0) > 0

    def remove_from_zone(self, module_id: str) -> bool:
        return self.assign_zone(module_id, None)

    def rename_module(self, module_id: str, name: Optional[str]) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(device_system_status)
                .where(device_system_status.c.module_id == module_id)
                .values(name=name)
            )
        return (result.rowcount or 0) > 0

    def update_preferences(self, module_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Mezcla `changes` en las preferencias guardadas. None si el módulo no existe."""
        t = device_system_status.c
        with self._engine.begin() as conn:
            row = conn.execute(select(t.preferences).where(t.module_id == module_id)).first()
            if row is None:
                return None
            merged = dict(row.preferences or {})
            merged.update(changes)
            conn.execute(
                update(device_system_status).where(t.module_id == module_id).values(preferences=merged)
            )
        return merged
