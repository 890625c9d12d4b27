"""Integration tests for the MongoDB adapters against a live server.

Run with:
    MONGODB_TEST_URI=mongodb://localhost:27017 pytest src/encoder_ops/platform/integration -v
"""

import threading
from datetime import datetime, timedelta, timezone

from bson import ObjectId

from encoder_ops.features.aid.coordinator import AidCoordinator
from encoder_ops.features.jobs.models import JobStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _insert(store_client, job_id: str, **fields) -> None:
    doc = {
        "id": job_id,
        "status": "pending",
        "created_at": _now(),
        "metadata": {"video_owner": "alice", "video_permlink": job_id},
        "input": {"uri": f"ipfs://{job_id}", "size": 10},
    }
    doc.update(fields)
    store_client.jobs.insert_one(doc)


class TestMongoAidProtocol:
    """Aid protocol against MongoJobsAdapter."""

    def test_claim_progress_complete(self, store_client, jobs_adapter):
        _insert(store_client, "J1")
        coordinator = AidCoordinator(jobs_adapter)

        assert coordinator.claim("J1", "W1").assigned_to == "W1"
        assert coordinator.report_progress(
            "J1", "W1", "running", {"download_pct": 100, "pct": 40}
        )
        assert coordinator.complete("J1", "W2", {"cid": "Y"}) is False
        assert coordinator.complete("J1", "W1", {"cid": "X"}) is True

        job = jobs_adapter.find_by_id("J1")
        assert job.status == JobStatus.COMPLETED
        assert job.progress.pct == 100
        assert job.result == {"cid": "X"}
        assert job.completed_at.tzinfo is not None

    def test_repeat_completion_keeps_first_timestamp(self, store_client, jobs_adapter):
        _insert(store_client, "J1")
        jobs_adapter.claim("J1", "W1")
        jobs_adapter.complete("J1", "W1", {"cid": "X"})
        first = jobs_adapter.find_by_id("J1").completed_at

        assert jobs_adapter.complete("J1", "W1", {"cid": "X2"})
        assert jobs_adapter.find_by_id("J1").completed_at == first

    def test_concurrent_claims_have_one_winner(self, store_client, jobs_adapter):
        _insert(store_client, "J1")
        barrier = threading.Barrier(8)
        winners = []

        def worker(n: int) -> None:
            barrier.wait()
            if jobs_adapter.claim("J1", f"W{n}") is not None:
                winners.append(n)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert jobs_adapter.find_by_id("J1").assigned_to == f"W{winners[0]}"

    def test_claim_by_store_id(self, store_client, jobs_adapter):
        oid = ObjectId()
        store_client.jobs.insert_one(
            {"_id": oid, "status": "pending", "created_at": _now()}
        )

        job = jobs_adapter.claim(str(oid), "W1")

        assert job.id == str(oid)

    def test_release_timed_out(self, store_client, jobs_adapter):
        stale = _now() - timedelta(minutes=61)
        fresh = _now() - timedelta(minutes=59)
        for job_id, claimed_at in (("stale", stale), ("fresh", fresh)):
            _insert(
                store_client,
                job_id,
                status="running",
                assigned_to="W1",
                assigned_date=claimed_at,
                serviced_by_aid=True,
                aid_claimed_at=claimed_at,
                last_pinged=claimed_at,
            )
        _insert(store_client, "gateway", status="running", assigned_to="W9", assigned_date=stale)

        assert jobs_adapter.release_timed_out(timedelta(hours=1)) == 1

        raw = store_client.jobs.find_one({"id": "stale"})
        assert raw["status"] == "pending"
        assert "assigned_to" not in raw
        assert jobs_adapter.find_by_id("fresh").status == JobStatus.RUNNING
        assert jobs_adapter.find_by_id("gateway").assigned_to == "W9"

    def test_completion_fills_null_completed_at(self, store_client, jobs_adapter):
        """A producer-written ``completed_at: null`` does not survive completion."""
        _insert(store_client, "J1", completed_at=None)
        jobs_adapter.claim("J1", "W1")

        assert jobs_adapter.complete("J1", "W1", {"cid": "X"})

        job = jobs_adapter.find_by_id("J1")
        assert job.completed_at is not None
        assert [j.id for j in jobs_adapter.completed_today()] == ["J1"]

    def test_completion_replaces_unparsable_completed_at(self, store_client, jobs_adapter):
        _insert(store_client, "J1", completed_at="not a date")
        jobs_adapter.claim("J1", "W1")

        assert jobs_adapter.complete("J1", "W1", {"cid": "X"})

        assert isinstance(store_client.jobs.find_one({"id": "J1"})["completed_at"], datetime)

    def test_result_keys_are_stored_literally(self, store_client, jobs_adapter):
        _insert(store_client, "J1")
        jobs_adapter.claim("J1", "W1")

        assert jobs_adapter.complete("J1", "W1", {"cid": "X", "sizes": [1, 2]})

        assert store_client.jobs.find_one({"id": "J1"})["result"] == {
            "cid": "X",
            "sizes": [1, 2],
        }

    def test_release_claim_with_null_ping(self, store_client, jobs_adapter):
        stale = _now() - timedelta(hours=2)
        _insert(
            store_client,
            "J1",
            status="assigned",
            assigned_to="W1",
            assigned_date=stale,
            serviced_by_aid=True,
            aid_claimed_at=stale,
            last_pinged=None,
        )

        assert jobs_adapter.release_timed_out(timedelta(hours=1)) == 1
        assert jobs_adapter.find_by_id("J1").status == JobStatus.PENDING

    def test_malformed_document_does_not_break_reads(self, store_client, jobs_adapter):
        _insert(store_client, "bad", input={"size": "big"}, created_at="yesterday")
        _insert(store_client, "good")

        assert {j.id for j in jobs_adapter.list_unclaimed()} == {"bad", "good"}
        assert jobs_adapter.find_by_id("bad").input.size == 0

    def test_list_unclaimed_oldest_first(self, store_client, jobs_adapter):
        _insert(store_client, "late", created_at=_now())
        _insert(store_client, "early", created_at=_now() - timedelta(minutes=5))
        _insert(store_client, "taken", assigned_to="W1")

        assert [j.id for j in jobs_adapter.list_unclaimed()] == ["early", "late"]


class TestMongoStatistics:
    """Aggregation pipelines against real documents."""

    def test_daily_and_encoder_rollups(self, store_client, statistics_adapter):
        day = _now().replace(hour=10, minute=0, second=0, microsecond=0)
        _insert(
            store_client,
            "a",
            status="completed",
            assigned_to="enc-a",
            current_quality="720p",
            assigned_date=day - timedelta(seconds=60),
            completed_at=day,
            encoding_time=50.0,
        )
        _insert(
            store_client,
            "b",
            status="complete",
            assigned_to="enc-a",
            current_quality="720p",
            assigned_date=day - timedelta(seconds=120),
            completed_at=day,
            encoding_time=100.0,
        )
        _insert(store_client, "c", status="failed", assigned_to="enc-b", last_pinged=day)

        since = day - timedelta(days=1)
        [stat] = statistics_adapter.daily_rollup(since)

        assert stat.date == day.strftime("%Y-%m-%d")
        assert stat.videos_encoded == 3
        assert stat.completed == 2
        assert stat.failed == 1
        assert stat.total_encoding_time == 180.0
        assert {e.encoder_id: e.count for e in stat.by_encoder} == {"enc-a": 2, "enc-b": 1}

        perf = statistics_adapter.encoder_performance(since)
        assert [p.encoder_id for p in perf] == ["enc-a", "enc-b"]
        assert perf[0].total_encoding_time == 150.0
        assert perf[1].success_rate == 0.0
