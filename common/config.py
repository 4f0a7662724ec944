from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _default_manifests_dir() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / "telemetry_ingest" / "registry" / "manifests")


@dataclass(frozen=True)
class Settings:
    database_url: str

    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_client_id: str

    measurement_flush_size: int
    measurement_flush_interval_seconds: float
    status_flush_size: int
    status_flush_interval_seconds: float

    gap_detection_interval_minutes: float
    manifests_dir: str

    redis_url: Optional[str]
    live_redis_channel: str

    api_port: int
    log_level: str
    db_log_sink_enabled: bool


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    db_host = os.getenv("DB_HOST", "localhost")
    db_port = int(os.getenv("DB_PORT", "5432"))
    db_user = os.getenv("DB_USER", "postgres")
    db_password = os.getenv("DB_PASSWORD", "")
    db_name = os.getenv("DB_NAME", "telemetry")
    return f"postgresql+psycopg2://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=build_database_url(),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "telemetry-ingest"),
        measurement_flush_size=int(os.getenv("MEASUREMENT_FLUSH_SIZE", "100")),
        measurement_flush_interval_seconds=float(os.getenv("MEASUREMENT_FLUSH_INTERVAL_SECONDS", "5.0")),
        status_flush_size=int(os.getenv("STATUS_FLUSH_SIZE", "50")),
        status_flush_interval_seconds=float(os.getenv("STATUS_FLUSH_INTERVAL_SECONDS", "2.5")),
        gap_detection_interval_minutes=float(os.getenv("GAP_DETECTION_INTERVAL_MINUTES", "15")),
        manifests_dir=os.getenv("MANIFESTS_DIR", _default_manifests_dir()),
        redis_url=os.getenv("REDIS_URL") or None,
        live_redis_channel=os.getenv("LIVE_REDIS_CHANNEL", "telemetry:live"),
        api_port=int(os.getenv("API_PORT", "3001")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        # Persist [CATEGORY] log records into system_logs
        db_log_sink_enabled=_env_flag("FF_DB_LOG_SINK", "true"),
    )
