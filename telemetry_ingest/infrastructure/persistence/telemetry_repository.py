"""Implementación SQL de `TelemetryRepository`.

Los upserts usan ``INSERT .. ON CONFLICT DO UPDATE`` con el dialecto de
PostgreSQL o SQLite, según el engine. Las reglas de merge viven en las
cláusulas SET: los escritores concurrentes nunca leen-modifican-escriben en Python.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from ...core.domain.measurement import Measurement
from ...core.domain.repository import (
    ModuleSystemInfo,
    SensorConfigRow,
    SensorStatusRow,
    SystemLogEntry,
    TelemetryRepository,
)
from ...core.domain.status_updates import ChipInfo, SystemConfigPayload, SystemPayload
from .postgres_setup import SUPPORTED_DIALECTS, UnsupportedDialectError
from .tables import (
    device_hardware,
    device_system_status,
    measurements,
    sensor_config,
    sensor_status,
    system_logs,
)

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite pierde el tzinfo al leer; los valores guardados siempre son UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlTelemetryRepository(TelemetryRepository):
    """Almacenamiento de telemetría en PostgreSQL/TimescaleDB (SQLite en tests)."""

    def __init__(self, engine: Engine):
        dialect = engine.dialect.name
        if dialect not in SUPPORTED_DIALECTS:
            raise UnsupportedDialectError(f"dialect {dialect!r} is not supported")
        self._engine = engine
        self._dialect = dialect

    @property
    def engine(self) -> Engine:
        return self._engine

    def _insert(self, table):
        if self._dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    def _ensure_module(self, conn, module_id: str) -> None:
        # Any status message registers the module
        stmt = self._insert(device_system_status).values(module_id=module_id)
        conn.execute(stmt.on_conflict_do_nothing(index_elements=[device_system_status.c.module_id]))

    # -- writes ------------------------------------------------------------

    def upsert_measurements_batch(self, batch: Sequence[Measurement]) -> None:
        if not batch:
            return

        stmt = self._insert(measurements)
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                measurements.c.time,
                measurements.c.module_id,
                measurements.c.sensor_type,
                measurements.c.hardware_id,
            ],
            set_={"value": stmt.excluded.value},
        )
        with self._engine.begin() as conn:
            conn.execute(stmt, [m.to_row() for m in batch])

    def upsert_system_status(self, module_id: str, data: SystemPayload, updated_at: datetime) -> None:
        memory = data.memory
        stmt = self._insert(device_system_status).values(
            module_id=module_id,
            rssi=data.rssi,
            heap_free_kb=memory.heap_free_kb if memory else None,
            heap_min_free_kb=memory.heap_min_free_kb if memory else None,
            updated_at=updated_at,
        )
        t = device_system_status.c
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.module_id],
            set_={
                "rssi": stmt.excluded.rssi,
                "heap_free_kb": func.coalesce(stmt.excluded.heap_free_kb, t.heap_free_kb),
                "heap_min_free_kb": func.coalesce(stmt.excluded.heap_min_free_kb, t.heap_min_free_kb),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def upsert_system_config(
        self,
        module_id: str,
        data: SystemConfigPayload,
        booted_at: Optional[datetime],
        updated_at: datetime,
    ) -> None:
        flash = data.flash
        memory = data.memory
        stmt = self._insert(device_system_status).values(
            module_id=module_id,
            module_type=data.module_type,
            ip=data.ip,
            mac=data.mac,
            booted_at=booted_at,
            rssi=data.rssi,
            flash_used_kb=flash.used_kb if flash else None,
            flash_free_kb=flash.free_kb if flash else None,
            flash_system_kb=flash.reported_total_kb if flash else None,
            heap_total_kb=memory.heap_total_kb if memory else None,
            heap_free_kb=memory.heap_free_kb if memory else None,
            heap_min_free_kb=memory.heap_min_free_kb if memory else None,
            updated_at=updated_at,
        )
        t = device_system_status.c
        merged = (
            "module_type", "ip", "mac", "booted_at", "rssi",
            "flash_used_kb", "flash_free_kb", "flash_system_kb",
            "heap_total_kb", "heap_free_kb", "heap_min_free_kb",
        )
        set_ = {name: func.coalesce(stmt.excluded[name], t[name]) for name in merged}
        set_["updated_at"] = stmt.excluded.updated_at
        stmt = stmt.on_conflict_do_update(index_elements=[t.module_id], set_=set_)
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def upsert_sensor_status(
        self,
        module_id: str,
        sensor_type: str,
        status: Optional[str],
        value: Optional[float],
        updated_at: datetime,
    ) -> None:
        stmt = self._insert(sensor_status).values(
            module_id=module_id,
            sensor_type=sensor_type,
            status=status,
            value=value,
            updated_at=updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[sensor_status.c.module_id, sensor_status.c.sensor_type],
            set_={
                "status": stmt.excluded.status,
                "value": stmt.excluded.value,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self._engine.begin() as conn:
            self._ensure_module(conn, module_id)
            conn.execute(stmt)

    def upsert_sensor_config(
        self,
        module_id: str,
        sensor_type: str,
        interval_seconds: Optional[int],
        model: Optional[str],
        updated_at: datetime,
        enabled: Optional[bool] = None,
    ) -> None:
        values = {
            "module_id": module_id,
            "sensor_type": sensor_type,
            "interval_seconds": interval_seconds,
            "model": model,
            "updated_at": updated_at,
        }
        if enabled is not None:
            values["enabled"] = enabled

        stmt = self._insert(sensor_config).values(**values)
        t = sensor_config.c
        set_ = {
            "interval_seconds": func.coalesce(stmt.excluded.interval_seconds, t.interval_seconds),
            "model": func.coalesce(stmt.excluded.model, t.model),
            "updated_at": stmt.excluded.updated_at,
        }
        # Firmware config messages never carry `enabled`; only touch it when asked
        if enabled is not None:
            set_["enabled"] = stmt.excluded.enabled
        stmt = stmt.on_conflict_do_update(index_elements=[t.module_id, t.sensor_type], set_=set_)
        with self._engine.begin() as conn:
            self._ensure_module(conn, module_id)
            conn.execute(stmt)

    def upsert_hardware(self, module_id: str, chip: Optional[ChipInfo], updated_at: datetime) -> None:
        stmt = self._insert(device_hardware).values(
            module_id=module_id,
            chip_model=chip.model if chip else None,
            chip_rev=chip.rev if chip else None,
            cpu_freq_mhz=chip.cpu_freq_mhz if chip else None,
            flash_kb=chip.flash_kb if chip else None,
            cores=chip.cores if chip else None,
            updated_at=updated_at,
        )
        overwritten = ("chip_model", "chip_rev", "cpu_freq_mhz", "flash_kb", "cores", "updated_at")
        stmt = stmt.on_conflict_do_update(
            index_elements=[device_hardware.c.module_id],
            set_={name: stmt.excluded[name] for name in overwritten},
        )
        with self._engine.begin() as conn:
            self._ensure_module(conn, module_id)
            conn.execute(stmt)

    def insert_system_log(self, entries: Sequence[SystemLogEntry]) -> None:
        if not entries:
            return
        rows = []
        for entry in entries:
            row = {
                "category": entry.category,
                "source": entry.source,
                "direction": entry.direction,
                "level": entry.level,
                "msg": entry.msg,
                "time": entry.time,
                "details": entry.details,
            }
            if entry.id:
                row["id"] = entry.id
            rows.append(row)
        with self._engine.begin() as conn:
            conn.execute(system_logs.insert(), rows)

    # -- reads -------------------------------------------------------------

    def get_enabled_sensor_configs_by_module(self) -> Dict[str, Dict[str, Optional[int]]]:
        t = sensor_config.c
        query = (
            select(t.module_id, t.sensor_type, t.interval_seconds)
            .where(t.enabled.is_(True))
            .order_by(t.module_id, t.sensor_type)
        )
        grouped: Dict[str, Dict[str, Optional[int]]] = {}
        with self._engine.connect() as conn:
            for module_id, sensor_type, interval in conn.execute(query):
                grouped.setdefault(module_id, {})[sensor_type] = interval
        return grouped

    def get_sensor_configs(self, module_id: str, enabled_only: bool = True) -> List[SensorConfigRow]:
        t = sensor_config.c
        query = select(t.module_id, t.sensor_type, t.interval_seconds, t.model, t.enabled).where(
            t.module_id == module_id
        )
        if enabled_only:
            query = query.where(t.enabled.is_(True))
        query = query.order_by(t.sensor_type)
        with self._engine.connect() as conn:
            return [
                SensorConfigRow(
                    module_id=row.module_id,
                    sensor_type=row.sensor_type,
                    interval_seconds=row.interval_seconds,
                    model=row.model,
                    enabled=bool(row.enabled),
                )
                for row in conn.execute(query)
            ]

    def get_sensor_config(self, module_id: str, sensor_type: str) -> Optional[SensorConfigRow]:
        t = sensor_config.c
        query = select(t.module_id, t.sensor_type, t.interval_seconds, t.model, t.enabled).where(
            t.module_id == module_id, t.sensor_type == sensor_type
        )
        with self._engine.connect() as conn:
            row = conn.execute(query).first()
        if row is None:
            return None
        return SensorConfigRow(
            module_id=row.module_id,
            sensor_type=row.sensor_type,
            interval_seconds=row.interval_seconds,
            model=row.model,
            enabled=bool(row.enabled),
        )

    def get_sensor_statuses(self, module_id: str) -> List[SensorStatusRow]:
        t = sensor_status.c
        query = select(t.module_id, t.sensor_type, t.status, t.value, t.updated_at).where(
            t.module_id == module_id
        ).order_by(t.sensor_type)
        with self._engine.connect() as conn:
            return [
                SensorStatusRow(
                    module_id=row.module_id,
                    sensor_type=row.sensor_type,
                    status=row.status,
                    value=row.value,
                    updated_at=as_utc(row.updated_at),
                )
                for row in conn.execute(query)
            ]

    def get_last_measurement_time(
        self,
        module_id: str,
        sensor_type: str,
        hardware_id: Optional[str] = None,
    ) -> Optional[datetime]:
        t = measurements.c
        query = select(func.max(t.time)).where(t.module_id == module_id, t.sensor_type == sensor_type)
        if hardware_id is not None:
            query = query.where(t.hardware_id == hardware_id)
        with self._engine.connect() as conn:
            return as_utc(conn.execute(query).scalar())

    def get_measurement_timestamps_in_window(
        self,
        module_id: str,
        sensor_type: str,
        since: datetime,
        hardware_id: Optional[str] = None,
    ) -> List[datetime]:
        t = measurements.c
        query = select(t.time).where(
            t.module_id == module_id,
            t.sensor_type == sensor_type,
            t.time > since,
        )
        if hardware_id is not None:
            query = query.where(t.hardware_id == hardware_id)
        query = query.order_by(t.time)
        with self._engine.connect() as conn:
            return [as_utc(ts) for ts in conn.execute(query).scalars()]

    def get_module_type(self, module_id: str) -> Optional[str]:
        t = device_system_status.c
        with self._engine.connect() as conn:
            return conn.execute(select(t.module_type).where(t.module_id == module_id)).scalar()

    def get_module_info(self, module_id: str) -> Optional[ModuleSystemInfo]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(device_system_status).where(device_system_status.c.module_id == module_id)
            ).mappings().first()
        if row is None:
            return None
        data = dict(row)
        data["preferences"] = data.get("preferences") or {}
        data["booted_at"] = as_utc(data.get("booted_at"))
        data["updated_at"] = as_utc(data.get("updated_at"))
        return ModuleSystemInfo(**data)

    def list_module_ids(self) -> List[str]:
        t = device_system_status.c
        with self._engine.connect() as conn:
            return list(conn.execute(select(t.module_id).order_by(t.module_id)).scalars())

    def get_system_logs(
        self,
        category: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[SystemLogEntry]:
        t = system_logs.c
        query = select(system_logs)
        if category:
            query = query.where(t.category == category)
        if since is not None:
            query = query.where(t.time >= since)
        query = query.order_by(t.time.desc()).limit(limit)
        with self._engine.connect() as conn:
            return [
                SystemLogEntry(
                    id=row["id"],
                    category=row["category"],
                    source=row["source"],
                    direction=row["direction"],
                    level=row["level"],
                    msg=row["msg"],
                    time=as_utc(row["time"]),
                    details=row["details"],
                )
                for row in conn.execute(query).mappings()
            ]

    # -- lifecycle ---------------------------------------------------------

    def delete_module(self, module_id: str) -> bool:
        deleted = 0
        with self._engine.begin() as conn:
            for table in (measurements, sensor_status, sensor_config, device_hardware, device_system_status):
                result = conn.execute(delete(table).where(table.c.module_id == module_id))
                deleted += result.rowcount or 0
        if deleted:
            logger.info("[DB] Deleted module %s (%d rows)", module_id, deleted)
        return deleted > 0

    def ping(self) -> Tuple[bool, Optional[str]]:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True, None
        except Exception as e:
            return False, str(e)
