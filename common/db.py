from __future__ import annotations

import logging
import threading
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Creating engine dialect=%s host=%s port=%s db=%s user=%s",
        url.get_backend_name(),
        url.host,
        url.port,
        url.database,
        url.username,
    )

    engine = create_engine(database_url, pool_pre_ping=True, future=True)

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection test OK")
    except Exception:
        logger.exception("[DB] Connection test FAILED")

    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Engine compartido del proceso (se crea en el primer uso)."""
    global _engine

    with _engine_lock:
        if _engine is None:
            settings = settings or get_settings()
            _engine = build_engine(settings.database_url)
        return _engine


def dispose_engine() -> None:
    global _engine

    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
