"""Fixtures compartidos: SQLite en memoria, registry y reloj controlable."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from telemetry_ingest.infrastructure.persistence import (
    SqlDeviceRepository,
    SqlTelemetryRepository,
    ensure_schema,
)
from telemetry_ingest.registry import ManifestRegistry

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Reloj manual: devuelve siempre `now` hasta que se avanza."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repository(engine) -> SqlTelemetryRepository:
    return SqlTelemetryRepository(engine)


@pytest.fixture
def device_repository(engine) -> SqlDeviceRepository:
    return SqlDeviceRepository(engine)


@pytest.fixture(scope="session")
def registry() -> ManifestRegistry:
    reg = ManifestRegistry()
    reg.load_all()
    return reg
