"""Handler de logging que persiste registros categorizados en system_logs.

Sólo se guardan los registros cuyo mensaje empieza con ``[CATEGORY]`` o
``[CATEGORY:extra]``; el prefijo se quita y va a la columna ``category``.
Los registros se acumulan y se escriben en un único insert cada
``flush_interval`` segundos, o apenas haya ``capacity`` registros esperando.
"""

from __future__ import annotations

import logging
import re
import sys
import threading
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ...core.domain.repository import SystemLogEntry, TelemetryRepository

CATEGORY_RE = re.compile(r"^\[([A-Z0-9_]+)(?::[^\]]+)?\]\s*")

LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


def parse_category(message: str) -> Tuple[Optional[str], str]:
    """``("MQTT", "rest")`` para ``"[MQTT] rest"``; ``(None, message)`` en otro caso."""
    match = CATEGORY_RE.match(message)
    if not match:
        return None, message
    return match.group(1), message[match.end():]


class SystemLogHandler(logging.Handler):
    def __init__(
        self,
        repository: TelemetryRepository,
        flush_interval: float = 5.0,
        capacity: int = 100,
        level: int = logging.INFO,
    ):
        super().__init__(level)
        self._repository = repository
        self._flush_interval = flush_interval
        self._capacity = capacity
        self._buffer: List[SystemLogEntry] = []
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            category, msg = parse_category(record.getMessage())
            if category is None:
                return
            entry = SystemLogEntry(
                category=category,
                level=LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
                msg=msg,
                time=datetime.fromtimestamp(record.created, tz=timezone.utc),
                source=getattr(record, "source", None) or "SYSTEM",
                direction=getattr(record, "direction", None),
                details=getattr(record, "details", None) or {},
            )
        except Exception:
            self.handleError(record)
            return

        self.acquire()
        try:
            self._buffer.append(entry)
            full = len(self._buffer) >= self._capacity
        finally:
            self.release()

        self._ensure_timer()
        if full:
            self.flush()

    def pending(self) -> int:
        self.acquire()
        try:
            return len(self._buffer)
        finally:
            self.release()

    def flush(self) -> None:
        self.acquire()
        try:
            entries, self._buffer = self._buffer, []
        finally:
            self.release()
        if not entries:
            return
        # Inserts are serialized so batches land in emission order
        with self._write_lock:
            try:
                self._repository.insert_system_log(entries)
            except Exception as e:
                # Logging here would feed the handler its own failure
                sys.stderr.write(f"Failed to batch insert logs: {e}\n")

    def close(self) -> None:
        self._stop_event.set()
        if self._timer is not None:
            self._timer.join(timeout=self._flush_interval + 1)
            self._timer = None
        self.flush()
        super().close()

    def _ensure_timer(self) -> None:
        if self._timer is not None or self._stop_event.is_set():
            return
        self.acquire()
        try:
            if self._timer is None:
                self._timer = threading.Thread(target=self._run, name="system-log-flush", daemon=True)
                self._timer.start()
        finally:
            self.release()

    def _run(self) -> None:
        while not self._stop_event.wait(self._flush_interval):
            self.flush()
