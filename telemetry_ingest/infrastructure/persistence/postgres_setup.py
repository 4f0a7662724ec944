"""Creación del schema de telemetría.

`create_all` se puede llamar en cada arranque. En PostgreSQL la tabla de
mediciones se convierte en hypertable de TimescaleDB si la extensión está
instalada; sin ella el servicio sigue funcionando sobre una tabla común.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .tables import metadata

logger = logging.getLogger(__name__)


class UnsupportedDialectError(RuntimeError):
    """Los upserts sólo están implementados para PostgreSQL y SQLite."""


SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def ensure_schema(engine: Engine) -> None:
    """Crea las tablas que falten (y la hypertable en TimescaleDB)."""
    dialect = engine.dialect.name
    if dialect not in SUPPORTED_DIALECTS:
        raise UnsupportedDialectError(f"dialect {dialect!r} is not supported")

    logger.info("[DB] Ensuring schema exists (dialect=%s)", dialect)
    metadata.create_all(engine)

    if dialect == "postgresql":
        _ensure_hypertable(engine)


def _ensure_hypertable(engine: Engine) -> None:
    try:
        with engine.begin() as conn:
            has_timescale = conn.execute(
                text("SELECT 1 FROM pg_extension WHERE extname = 'timescaledb'")
            ).scalar()
            if not has_timescale:
                logger.info("[DB] TimescaleDB extension not installed - measurements stays a plain table")
                return
            conn.execute(
                text("SELECT create_hypertable('measurements', 'time', if_not_exists => TRUE, migrate_data => TRUE)")
            )
        logger.info("[DB] measurements hypertable ready")
    except Exception as e:
        logger.warning("[DB] Could not create measurements hypertable: %s", e)
