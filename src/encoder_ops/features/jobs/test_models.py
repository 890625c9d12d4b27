"""Unit tests for job normalization."""

from datetime import datetime, timezone

from bson import ObjectId
from structlog.testing import capture_logs

from encoder_ops.features.jobs.models import (
    JobStatus,
    normalize_cluster_node,
    normalize_job,
    status_values,
)


class TestNormalizeJob:
    """Tests for normalize_job()."""

    def test_prefers_external_id(self):
        """The external id wins over the store id."""
        job = normalize_job({"_id": ObjectId(), "id": "job-1", "status": "pending"})
        assert job.id == "job-1"

    def test_falls_back_to_stringified_store_id(self):
        """Documents without an external id expose the store id as a string."""
        oid = ObjectId()
        job = normalize_job({"_id": oid, "status": "pending"})
        assert job.id == str(oid)
        assert isinstance(job.id, str)

    def test_legacy_complete_maps_to_completed(self):
        """The historical 'complete' spelling reads as COMPLETED."""
        job = normalize_job({"id": "j", "status": "complete"})
        assert job.status == JobStatus.COMPLETED
        assert job.succeeded

    def test_unknown_status_is_kept_distinct(self):
        """Unrecognized producer states never read as queued work."""
        job = normalize_job({"id": "j", "status": "cancelled"})
        assert job.status == JobStatus.UNKNOWN
        assert job.raw_status == "cancelled"

    def test_missing_status_is_unknown(self):
        job = normalize_job({"id": "j"})
        assert job.status == JobStatus.UNKNOWN
        assert job.raw_status is None

    def test_missing_fields_get_defaults(self):
        """Sparse documents still produce a complete record."""
        job = normalize_job({"id": "j", "status": "pending"})
        assert job.metadata.video_owner == ""
        assert job.input.size == 0
        assert job.progress is None
        assert job.serviced_by_aid is False
        assert job.assigned_to is None

    def test_legacy_flat_fields_are_folded(self):
        """owner/permlink/input_uri/encoder_id/ipfs_cid move into the structured fields."""
        job = normalize_job(
            {
                "id": "j",
                "status": "complete",
                "owner": "bob",
                "permlink": "clip",
                "input_uri": "ipfs://src",
                "input_size": 99,
                "encoder_id": "did:key:enc",
                "ipfs_cid": "QmResult",
            }
        )
        assert job.metadata.video_owner == "bob"
        assert job.metadata.video_permlink == "clip"
        assert job.input.uri == "ipfs://src"
        assert job.input.size == 99
        assert job.assigned_to == "did:key:enc"
        assert job.result == {"ipfs_cid": "QmResult"}

    def test_numeric_progress(self):
        """Numeric progress written at completion or release becomes a Progress."""
        done = normalize_job({"id": "j", "status": "completed", "progress": 100})
        assert done.progress.pct == 100
        assert done.progress.download_pct == 100

        reset = normalize_job({"id": "j", "status": "pending", "progress": 0})
        assert reset.progress.pct == 0
        assert reset.progress.download_pct == 0

    def test_structured_progress(self):
        job = normalize_job(
            {"id": "j", "status": "running", "progress": {"download_pct": 100, "pct": 40}}
        )
        assert job.progress.download_pct == 100
        assert job.progress.pct == 40

    def test_out_of_range_progress_is_clamped(self):
        job = normalize_job({"id": "j", "status": "running", "progress": {"pct": 140}})
        assert job.progress.pct == 100

    def test_timestamps_become_utc_aware(self):
        """Naive datetimes and ISO strings are both read as UTC."""
        job = normalize_job(
            {
                "id": "j",
                "status": "pending",
                "created_at": datetime(2026, 1, 2, 3, 4, 5),
                "assigned_date": "2026-01-02T04:00:00+00:00",
            }
        )
        assert job.created_at.tzinfo is not None
        assert job.created_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert job.assigned_date == datetime(2026, 1, 2, 4, 0, tzinfo=timezone.utc)


def test_status_values_include_legacy_spelling():
    assert status_values(JobStatus.COMPLETED) == ["completed", "complete"]
    assert status_values(JobStatus.RUNNING) == ["running"]


def test_normalize_cluster_node():
    node = normalize_cluster_node(
        {
            "id": "did:key:enc",
            "name": "node-1",
            "cryptoAccounts": {"hive": "alice"},
            "peer_id": "12D3",
            "commit_hash": "abc123",
            "first_seen": "2026-01-01T00:00:00+00:00",
        }
    )
    assert node.did_key == "did:key:enc"
    assert node.node_name == "node-1"
    assert node.hive_account == "alice"
    assert node.banned is False
    assert node.first_seen == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert node.last_seen is None


class TestMalformedDocuments:
    """normalize_job() degrades field by field instead of raising."""

    def test_unparsable_timestamps_become_none(self):
        job = normalize_job(
            {"id": "j", "status": "pending", "created_at": "yesterday", "last_pinged": 12}
        )
        assert job.created_at is None
        assert job.last_pinged is None

    def test_wrong_shapes_fall_back_to_defaults(self):
        job = normalize_job(
            {
                "id": "j",
                "status": "running",
                "metadata": "alice/clip",
                "input": {"uri": "ipfs://src", "size": "big"},
                "progress": {"download_pct": "n/a", "pct": 30},
                "encoding_time": "slow",
                "result": "QmCid",
                "current_quality": 720,
            }
        )
        assert job.metadata.video_owner == ""
        assert job.input.uri == "ipfs://src"
        assert job.input.size == 0
        assert job.progress.download_pct == 0
        assert job.progress.pct == 30
        assert job.encoding_time is None
        assert job.result is None
        assert job.current_quality == "720"

    def test_skipped_fields_are_logged(self):
        with capture_logs() as logs:
            normalize_job({"id": "j", "status": "pending", "input": {"size": "big"}})

        skipped = [e for e in logs if e["event"] == "job_normalize_skipped_field"]
        assert [(e["job_id"], e["field"]) for e in skipped] == [("j", "input.size")]

    def test_well_formed_document_logs_nothing(self):
        with capture_logs() as logs:
            normalize_job({"id": "j", "status": "completed", "progress": 100})
        assert logs == []
