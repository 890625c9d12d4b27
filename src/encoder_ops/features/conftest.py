"""Shared fixtures for feature tests: a throwaway TinyDB and job documents."""

import os
import tempfile
from datetime import datetime, timezone

import pytest
from tinydb import TinyDB

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_job(job_id: str, created_at: datetime = T0, **fields) -> dict:
    doc = {
        "id": job_id,
        "status": "pending",
        "created_at": created_at.isoformat(),
        "metadata": {"video_owner": "alice", "video_permlink": f"video-{job_id}"},
        "input": {"uri": f"ipfs://{job_id}", "size": 1024},
    }
    for key, value in fields.items():
        doc[key] = value.isoformat() if isinstance(value, datetime) else value
    return doc


@pytest.fixture
def job_doc():
    """Factory for raw pending job documents as the producer stores them.

    Datetime field values are serialized to ISO strings like the TinyDB
    backend stores them.
    """
    return _make_job


@pytest.fixture
def tmp_db():
    """Create a temporary TinyDB database for testing."""
    fd, path = tempfile.mkstemp(suffix=".json")
    os.close(fd)
    db = TinyDB(path)
    yield db
    db.close()
    os.unlink(path)
