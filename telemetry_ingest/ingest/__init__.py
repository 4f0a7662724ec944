from .batch_persister import BatchPersister, dedupe_measurements
from .buffers import IngestionBuffer
from .flush_scheduler import PeriodicFlusher

__all__ = [
    "BatchPersister",
    "IngestionBuffer",
    "PeriodicFlusher",
    "dedupe_measurements",
]
