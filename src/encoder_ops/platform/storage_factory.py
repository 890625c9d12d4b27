"""Storage backend factory: selects MongoDB or TinyDB from Settings.

Usage::

    from encoder_ops.platform.storage_factory import open_storage

    with open_storage(settings) as storage:
        coordinator = AidCoordinator(storage.jobs)
        aggregator = StatisticsAggregator(storage.statistics)

The context manager owns the connection: it is opened on entry and closed on
exit, whatever happens in between.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from encoder_ops.platform.logging_config import get_logger
from encoder_ops.platform.protocols import JobStorePort, StatisticsPort
from encoder_ops.platform.settings import Settings, StorageBackend, load_settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class Storage:
    """Ports for one open backend."""

    jobs: JobStorePort
    statistics: StatisticsPort
    health_check: Callable[[], bool]


@contextmanager
def open_storage(settings: Settings | None = None) -> Iterator[Storage]:
    """Open the configured backend and yield its ports."""
    settings = settings or load_settings()

    if settings.storage_backend == StorageBackend.TINYDB:
        from tinydb import TinyDB

        from encoder_ops.platform.tinydb_jobs_adapter import (
            TinyDBJobsAdapter,
            TinyDBStatisticsAdapter,
        )

        db = TinyDB(settings.tinydb_path)
        logger.info("tinydb_opened", path=settings.tinydb_path)
        try:
            yield Storage(
                jobs=TinyDBJobsAdapter(db),
                statistics=TinyDBStatisticsAdapter(db),
                health_check=lambda: True,
            )
        finally:
            db.close()
        return

    from encoder_ops.platform.mongo_adapter import MongoJobsAdapter, MongoStatisticsAdapter
    from encoder_ops.platform.store_client import MongoStoreClient

    with MongoStoreClient(settings.mongodb_uri, settings.mongodb_database) as client:
        if not client.connected:
            logger.warning("storage_degraded", backend=settings.storage_backend.value)
        yield Storage(
            jobs=MongoJobsAdapter(client),
            statistics=MongoStatisticsAdapter(client),
            health_check=client.health_check,
        )
