"""MongoDB connection owner.

One ``MongoStoreClient`` is created per process (or per test) and passed to
the adapters that need it. A failed connection does not raise: the client
stays in degraded mode, ``collection()`` returns None and every adapter built
on it answers with empty reads and failed writes until ``connect()`` succeeds.

Usage::

    with MongoStoreClient(settings.mongodb_uri, settings.mongodb_database) as client:
        jobs = MongoJobsAdapter(client)
"""

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from encoder_ops.platform.logging_config import get_logger
from encoder_ops.platform.settings import DEFAULT_DATABASE

logger = get_logger(__name__)

JOBS_COLLECTION = "jobs"
CLUSTER_NODES_COLLECTION = "cluster_nodes"


class MongoStoreClient:
    """Owns a pymongo client and exposes collections while connected."""

    def __init__(self, uri: str, database: str | None = None):
        self.uri = uri
        self.database_name = database or DEFAULT_DATABASE
        self._client: MongoClient | None = None
        self._db: Database | None = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    def connect(self) -> bool:
        """Open the connection and verify it with a ping.

        Returns True on success. On failure the client is left in degraded
        mode and the error is logged.
        """
        if self.connected:
            return True

        client = None
        try:
            client = MongoClient(
                self.uri,
                maxPoolSize=10,
                serverSelectionTimeoutMS=10000,
                socketTimeoutMS=45000,
                tz_aware=True,
            )
            client.admin.command("ping")
        except PyMongoError as e:
            logger.error(
                "mongodb_connect_failed",
                database=self.database_name,
                error=str(e),
            )
            if client is not None:
                client.close()
            return False

        self._client = client
        self._db = client[self.database_name]
        logger.info("mongodb_connected", database=self.database_name)
        return True

    def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if self._client is not None:
            self._client.close()
            logger.info("mongodb_disconnected", database=self.database_name)
        self._client = None
        self._db = None

    def health_check(self) -> bool:
        """Return True when the server answers a ping."""
        if self._client is None:
            return False
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("mongodb_health_check_failed", error=str(e))
            return False

    def collection(self, name: str) -> Collection | None:
        """Return a collection, or None while degraded."""
        if self._db is None:
            return None
        return self._db[name]

    @property
    def jobs(self) -> Collection | None:
        return self.collection(JOBS_COLLECTION)

    def __enter__(self) -> "MongoStoreClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
