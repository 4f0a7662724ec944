"""Punto de entrada CLI del job de detección de huecos."""

from __future__ import annotations

import argparse
import logging
import time

from common.config import get_settings
from common.db import dispose_engine, get_engine
from telemetry_ingest.health.service import HealthService
from telemetry_ingest.infrastructure.persistence import SqlTelemetryRepository, ensure_schema

from .config import GapJobConfig
from .runner import GapDetectionJob

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    settings = get_settings()

    p = argparse.ArgumentParser(description="Data gap detection (system_logs DATA_GAP rows)")
    p.add_argument("--lookback-hours", type=float, default=1.0)
    p.add_argument("--sleep-seconds", type=float, default=settings.gap_detection_interval_minutes * 60)
    p.add_argument("--once", action="store_true", help="run a single iteration and exit")
    args = p.parse_args()

    cfg = GapJobConfig(
        interval_minutes=args.sleep_seconds / 60,
        lookback_hours=args.lookback_hours,
        once=bool(args.once),
    )

    engine = get_engine(settings)
    ensure_schema(engine)
    repository = SqlTelemetryRepository(engine)
    job = GapDetectionJob(HealthService(repository), repository, cfg)

    logger.info("Gap detection job started")
    logger.info("Config: lookback=%.1fh, sleep=%.1fs", cfg.lookback_hours, args.sleep_seconds)

    try:
        while True:
            logged = job.run_once()
            if cfg.once:
                return
            logger.info("Iteración completada (%d huecos), esperando %.1fs...", logged, args.sleep_seconds)
            time.sleep(args.sleep_seconds)
    except KeyboardInterrupt:
        logger.info("Gap detection job interrupted")
    finally:
        dispose_engine()


if __name__ == "__main__":
    main()
