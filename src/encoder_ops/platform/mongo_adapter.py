"""MongoDB adapter implementations for encoder-ops storage ports.

Uses pymongo. Each adapter maps to a Protocol:
  - MongoJobsAdapter        → JobStorePort
  - MongoStatisticsAdapter  → StatisticsPort

Both take an injected ``MongoStoreClient``. Every state change on the Aid
path is a single conditional update (``find_one_and_update`` /
``update_one`` / ``update_many``) whose filter carries the precondition, so
concurrent claimants in separate processes cannot both win.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from encoder_ops.features.jobs.models import (
    IN_FLIGHT_STATUS_VALUES,
    SUCCESS_STATUS_VALUES,
    ClusterNode,
    EncoderJobsPage,
    Job,
    JobStatus,
    normalize_cluster_node,
    normalize_job,
    status_values,
)
from encoder_ops.features.statistics.errors import StatisticsError, StoreUnavailableError
from encoder_ops.features.statistics.models import DailyStatistic, EncoderPerformance
from encoder_ops.features.statistics.pipelines import (
    daily_statistics_pipeline,
    encoder_performance_pipeline,
)
from encoder_ops.features.statistics.rollup import finalize_daily, finalize_performance
from encoder_ops.platform.logging_config import get_logger
from encoder_ops.platform.store_client import CLUSTER_NODES_COLLECTION, MongoStoreClient

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def id_filter(job_id: str) -> dict:
    """Match a job by its external ``id`` or its store ``_id``."""
    clauses: list[dict] = [{"id": job_id}, {"_id": job_id}]
    if ObjectId.is_valid(job_id):
        clauses.append({"_id": ObjectId(job_id)})
    return {"$or": clauses}


def owner_filter(job_id: str, encoder_id: str, statuses: list[str]) -> dict:
    """Precondition shared by Aid progress and completion writes."""
    return {
        **id_filter(job_id),
        "assigned_to": encoder_id,
        "serviced_by_aid": True,
        "status": {"$in": statuses},
    }


def stale_claims_filter(cutoff: datetime) -> dict:
    """Aid claims with no ping (or no claim activity) since ``cutoff``."""
    return {
        "serviced_by_aid": True,
        "status": {"$in": list(IN_FLIGHT_STATUS_VALUES)},
        "$or": [
            {"last_pinged": {"$lt": cutoff}},
            # None matches both a missing and a null last_pinged.
            {"last_pinged": None, "aid_claimed_at": {"$lt": cutoff}},
        ],
    }


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class MongoJobsAdapter:
    """JobStorePort implementation backed by MongoDB."""

    def __init__(self, client: MongoStoreClient):
        self._client = client

    def _collection(self, operation: str) -> Collection | None:
        jobs = self._client.jobs
        if jobs is None:
            logger.warning("mongodb_unavailable", operation=operation)
        return jobs

    def _read(self, operation: str, default: Any, query: Callable[[Collection], Any]) -> Any:
        jobs = self._collection(operation)
        if jobs is None:
            return default
        try:
            return query(jobs)
        except PyMongoError as e:
            logger.error("mongodb_read_failed", operation=operation, error=str(e))
            return default

    # --- Aid fallback path ---

    def list_unclaimed(self) -> list[Job]:
        def query(jobs: Collection) -> list[Job]:
            cursor = jobs.find(
                {"status": JobStatus.PENDING.value, "assigned_to": None}
            ).sort("created_at", ASCENDING)
            return [normalize_job(doc) for doc in cursor]

        return self._read("list_unclaimed", [], query)

    def find_by_id(self, job_id: str) -> Job | None:
        def query(jobs: Collection) -> Job | None:
            doc = jobs.find_one(id_filter(job_id))
            return normalize_job(doc) if doc else None

        return self._read("find_by_id", None, query)

    def claim(self, job_id: str, encoder_id: str) -> Job | None:
        jobs = self._collection("claim")
        if jobs is None:
            return None

        now = _now()
        try:
            doc = jobs.find_one_and_update(
                {
                    **id_filter(job_id),
                    "status": JobStatus.PENDING.value,
                    "assigned_to": None,
                },
                {
                    "$set": {
                        "status": JobStatus.ASSIGNED.value,
                        "assigned_to": encoder_id,
                        "assigned_date": now,
                        "serviced_by_aid": True,
                        "aid_claimed_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error("aid_claim_failed", job_id=job_id, encoder_id=encoder_id, error=str(e))
            return None

        if doc is None:
            logger.warning("aid_claim_rejected", job_id=job_id, encoder_id=encoder_id)
            return None

        logger.info("aid_job_claimed", job_id=job_id, encoder_id=encoder_id)
        return normalize_job(doc)

    def update_progress(
        self, job_id: str, encoder_id: str, status: str, progress: dict
    ) -> bool:
        jobs = self._collection("update_progress")
        if jobs is None:
            return False

        try:
            result = jobs.update_one(
                owner_filter(job_id, encoder_id, list(IN_FLIGHT_STATUS_VALUES)),
                {
                    "$set": {
                        "status": status,
                        "progress": dict(progress),
                        "last_pinged": _now(),
                    }
                },
            )
        except PyMongoError as e:
            logger.error("aid_progress_failed", job_id=job_id, error=str(e))
            return False

        if result.matched_count == 0:
            logger.warning("aid_progress_rejected", job_id=job_id, encoder_id=encoder_id)
            return False

        logger.debug("aid_progress_updated", job_id=job_id, pct=progress.get("pct"))
        return True

    def complete(self, job_id: str, encoder_id: str, result: dict) -> bool:
        jobs = self._collection("complete")
        if jobs is None:
            return False

        statuses = [*IN_FLIGHT_STATUS_VALUES, JobStatus.COMPLETED.value]
        try:
            # Update pipeline: completed_at is written unless it already holds a
            # date, so missing, null and drifted values are replaced while a
            # repeat completion keeps the first value.
            update = jobs.update_one(
                owner_filter(job_id, encoder_id, statuses),
                [
                    {
                        "$set": {
                            "status": JobStatus.COMPLETED.value,
                            "result": {"$literal": result},
                            "progress": 100,
                            "completed_at": {
                                "$cond": [
                                    {"$eq": [{"$type": "$completed_at"}, "date"]},
                                    "$completed_at",
                                    _now(),
                                ]
                            },
                        }
                    }
                ],
            )
        except PyMongoError as e:
            logger.error("aid_complete_failed", job_id=job_id, error=str(e))
            return False

        if update.matched_count == 0:
            logger.warning("aid_complete_rejected", job_id=job_id, encoder_id=encoder_id)
            return False

        logger.info("aid_job_completed", job_id=job_id, encoder_id=encoder_id)
        return True

    def release_timed_out(self, stale_after: timedelta) -> int:
        jobs = self._collection("release_timed_out")
        if jobs is None:
            return 0

        cutoff = _now() - stale_after
        try:
            result = jobs.update_many(
                stale_claims_filter(cutoff),
                {
                    "$set": {"status": JobStatus.PENDING.value, "progress": 0},
                    "$unset": {
                        "assigned_to": "",
                        "assigned_date": "",
                        "serviced_by_aid": "",
                        "aid_claimed_at": "",
                        "last_pinged": "",
                    },
                },
            )
        except PyMongoError as e:
            logger.error("aid_release_failed", error=str(e))
            return 0

        if result.modified_count > 0:
            logger.info("aid_jobs_released", count=result.modified_count)
        return result.modified_count

    def is_first_aid_claim(self) -> bool:
        return self._read(
            "is_first_aid_claim",
            False,
            lambda jobs: jobs.count_documents({"serviced_by_aid": True}) == 1,
        )

    # --- Dashboard reads ---

    def recent_by_status(
        self, status: JobStatus, limit: int = 10, newest_first: bool = True
    ) -> list[Job]:
        direction = DESCENDING if newest_first else ASCENDING

        def query(jobs: Collection) -> list[Job]:
            cursor = (
                jobs.find({"status": {"$in": status_values(status)}})
                .sort("created_at", direction)
                .limit(limit)
            )
            return [normalize_job(doc) for doc in cursor]

        return self._read("recent_by_status", [], query)

    def active_jobs(self, limit: int = 10) -> list[Job]:
        return self.recent_by_status(JobStatus.RUNNING, limit)

    def available_jobs(self, limit: int = 10) -> list[Job]:
        return self.recent_by_status(JobStatus.UNASSIGNED, limit)

    def recent_jobs(self, limit: int = 50) -> list[Job]:
        def query(jobs: Collection) -> list[Job]:
            cursor = jobs.find({}).sort("created_at", DESCENDING).limit(limit)
            return [normalize_job(doc) for doc in cursor]

        return self._read("recent_jobs", [], query)

    def completed_today(self) -> list[Job]:
        start_of_day = _now().replace(hour=0, minute=0, second=0, microsecond=0)

        def query(jobs: Collection) -> list[Job]:
            cursor = jobs.find(
                {
                    "status": {"$in": list(SUCCESS_STATUS_VALUES)},
                    "completed_at": {"$gte": start_of_day},
                }
            ).sort("completed_at", DESCENDING)
            return [normalize_job(doc) for doc in cursor]

        return self._read("completed_today", [], query)

    def completed_jobs(self, limit: int = 20, offset: int = 0) -> list[Job]:
        def query(jobs: Collection) -> list[Job]:
            cursor = (
                jobs.find({"status": {"$in": list(SUCCESS_STATUS_VALUES)}})
                .sort("completed_at", DESCENDING)
                .skip(offset)
                .limit(limit)
            )
            return [normalize_job(doc) for doc in cursor]

        return self._read("completed_jobs", [], query)

    def last_completed_jobs(self, limit: int = 10) -> list[Job]:
        def query(jobs: Collection) -> list[Job]:
            cursor = (
                jobs.find(
                    {
                        "status": {"$in": list(SUCCESS_STATUS_VALUES)},
                        "completed_at": {"$exists": True},
                    }
                )
                .sort("completed_at", DESCENDING)
                .limit(limit)
            )
            return [normalize_job(doc) for doc in cursor]

        return self._read("last_completed_jobs", [], query)

    def jobs_by_encoder(
        self, encoder_id: str, limit: int = 20, offset: int = 0
    ) -> EncoderJobsPage:
        criteria = {
            "assigned_to": encoder_id,
            "status": {"$in": [*SUCCESS_STATUS_VALUES, *IN_FLIGHT_STATUS_VALUES]},
        }

        def query(jobs: Collection) -> EncoderJobsPage:
            cursor = (
                jobs.find(criteria)
                .sort([("completed_at", DESCENDING), ("created_at", DESCENDING)])
                .skip(offset)
                .limit(limit)
            )
            return EncoderJobsPage(
                jobs=[normalize_job(doc) for doc in cursor],
                total=jobs.count_documents(criteria),
            )

        return self._read("jobs_by_encoder", EncoderJobsPage(), query)

    def active_encoders_count(self, sample: int = 10) -> int:
        def query(jobs: Collection) -> int:
            cursor = (
                jobs.find(
                    {"assigned_to": {"$exists": True, "$ne": None}},
                    {"assigned_to": 1},
                )
                .sort("created_at", DESCENDING)
                .limit(sample)
            )
            return len({doc["assigned_to"] for doc in cursor})

        return self._read("active_encoders_count", 0, query)

    def encoder_last_activity(self, encoder_id: str) -> datetime | None:
        def query(jobs: Collection) -> datetime | None:
            docs = list(
                jobs.find({"assigned_to": encoder_id})
                .sort(
                    [
                        ("completed_at", DESCENDING),
                        ("last_pinged", DESCENDING),
                        ("assigned_date", DESCENDING),
                    ]
                )
                .limit(1)
            )
            if not docs:
                return None
            job = normalize_job(docs[0])
            return job.completed_at or job.last_pinged or job.assigned_date or job.created_at

        return self._read("encoder_last_activity", None, query)

    def encoder_from_cluster(self, did_key: str) -> ClusterNode | None:
        nodes = self._client.collection(CLUSTER_NODES_COLLECTION)
        if nodes is None:
            logger.warning("mongodb_unavailable", operation="encoder_from_cluster")
            return None
        try:
            doc = nodes.find_one({"id": did_key})
        except PyMongoError as e:
            logger.error("cluster_node_lookup_failed", did_key=did_key, error=str(e))
            return None
        return normalize_cluster_node(doc) if doc else None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class MongoStatisticsAdapter:
    """StatisticsPort implementation running aggregation pipelines."""

    def __init__(self, client: MongoStoreClient):
        self._client = client

    def _aggregate(self, name: str, pipeline: list[dict]) -> list[dict]:
        jobs = self._client.jobs
        if jobs is None:
            raise StoreUnavailableError(f"Job store is not connected ({name})")
        try:
            return list(jobs.aggregate(pipeline))
        except PyMongoError as e:
            raise StatisticsError(f"{name} aggregation failed: {e}") from e

    def daily_rollup(self, since: datetime) -> list[DailyStatistic]:
        rows = self._aggregate("daily_statistics", daily_statistics_pipeline(since))
        try:
            return [finalize_daily(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise StatisticsError(f"Unexpected daily statistics row: {e}") from e

    def encoder_performance(
        self, since: datetime, encoder_id: str | None = None
    ) -> list[EncoderPerformance]:
        rows = self._aggregate(
            "encoder_performance", encoder_performance_pipeline(since, encoder_id)
        )
        try:
            return [finalize_performance(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise StatisticsError(f"Unexpected encoder performance row: {e}") from e
