"""Tablas SQLAlchemy Core del almacenamiento de telemetría.

Todos los timestamps se guardan en UTC. `measurements` pasa a ser hypertable
de TimescaleDB en PostgreSQL (ver postgres_setup.ensure_schema).
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

metadata = MetaData()


def _new_id() -> str:
    return str(uuid.uuid4())


zones = Table(
    "zones",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("created_at", DateTime(timezone=True)),
)

device_system_status = Table(
    "device_system_status",
    metadata,
    Column("module_id", Text, primary_key=True),
    Column("name", Text),
    Column("module_type", Text),
    Column("zone_id", String(36), ForeignKey("zones.id", ondelete="SET NULL")),
    Column("ip", Text),
    Column("mac", Text),
    Column("booted_at", DateTime(timezone=True)),
    Column("rssi", Integer),
    Column("flash_used_kb", Integer),
    Column("flash_free_kb", Integer),
    Column("flash_system_kb", Integer),
    Column("heap_total_kb", Integer),
    Column("heap_free_kb", Integer),
    Column("heap_min_free_kb", Integer),
    Column("updated_at", DateTime(timezone=True)),
    Column("preferences", JSON),
)

device_hardware = Table(
    "device_hardware",
    metadata,
    Column("module_id", Text, primary_key=True),
    Column("chip_model", Text),
    Column("chip_rev", Integer),
    Column("cpu_freq_mhz", Integer),
    Column("flash_kb", Integer),
    Column("cores", Integer),
    Column("updated_at", DateTime(timezone=True)),
)

sensor_status = Table(
    "sensor_status",
    metadata,
    Column("module_id", Text, nullable=False),
    Column("sensor_type", Text, nullable=False),
    Column("status", Text),
    Column("value", Float),
    Column("updated_at", DateTime(timezone=True)),
    PrimaryKeyConstraint("module_id", "sensor_type"),
)

sensor_config = Table(
    "sensor_config",
    metadata,
    Column("module_id", Text, nullable=False),
    Column("sensor_type", Text, nullable=False),
    Column("interval_seconds", Integer),
    Column("model", Text),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime(timezone=True)),
    PrimaryKeyConstraint("module_id", "sensor_type"),
)

measurements = Table(
    "measurements",
    metadata,
    Column("time", DateTime(timezone=True), nullable=False),
    Column("module_id", Text, nullable=False),
    Column("sensor_type", Text, nullable=False),
    Column("hardware_id", Text, nullable=False),
    Column("value", Float, nullable=False),
    PrimaryKeyConstraint("time", "module_id", "sensor_type", "hardware_id"),
    Index("measurements_module_id_time_idx", "module_id", "time"),
)

system_logs = Table(
    "system_logs",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("category", Text, nullable=False),
    Column("source", Text, nullable=False, default="SYSTEM"),
    Column("direction", Text),
    Column("level", Text, nullable=False),
    Column("msg", Text, nullable=False),
    Column("time", DateTime(timezone=True), nullable=False),
    Column("details", JSON),
    Index("system_logs_category_time_idx", "category", "time"),
)
