"""Integration test fixtures for a live MongoDB.

Requires a reachable server, e.g.:

    docker run -d -p 27017:27017 mongo:7
    MONGODB_TEST_URI=mongodb://localhost:27017 pytest src/encoder_ops/platform/integration -v

When the server is unreachable, all tests in this directory are skipped.
"""

import os
import uuid

import pytest
from pymongo import MongoClient
from pymongo.errors import PyMongoError

MONGODB_TEST_URI = os.environ.get("MONGODB_TEST_URI", "mongodb://localhost:27017")


def _mongo_running() -> bool:
    """Check if the test MongoDB answers a ping."""
    try:
        with MongoClient(MONGODB_TEST_URI, serverSelectionTimeoutMS=2000) as client:
            client.admin.command("ping")
        return True
    except PyMongoError:
        return False


if not _mongo_running():
    pytest.skip(
        f"MongoDB not reachable at {MONGODB_TEST_URI} (set MONGODB_TEST_URI)",
        allow_module_level=True,
    )


from encoder_ops.platform.mongo_adapter import (  # noqa: E402
    MongoJobsAdapter,
    MongoStatisticsAdapter,
)
from encoder_ops.platform.store_client import MongoStoreClient  # noqa: E402


@pytest.fixture
def store_client():
    """A connected client on a throwaway database, dropped afterwards."""
    client = MongoStoreClient(MONGODB_TEST_URI, f"encoder-ops-test-{uuid.uuid4().hex[:8]}")
    assert client.connect()
    yield client
    client._client.drop_database(client.database_name)
    client.close()


@pytest.fixture
def jobs_adapter(store_client):
    return MongoJobsAdapter(store_client)


@pytest.fixture
def statistics_adapter(store_client):
    return MongoStatisticsAdapter(store_client)
