"""TinyDB adapters wrapping jobs/storage free functions behind the storage ports."""

from datetime import datetime, timedelta, timezone

from tinydb import TinyDB

from encoder_ops.features.jobs import storage as job_storage
from encoder_ops.features.jobs.models import (
    ClusterNode,
    EncoderJobsPage,
    Job,
    JobStatus,
)
from encoder_ops.features.statistics import rollup
from encoder_ops.features.statistics.models import DailyStatistic, EncoderPerformance


class TinyDBJobsAdapter:
    """Wraps encoder_ops.features.jobs.storage behind JobStorePort."""

    def __init__(self, db: TinyDB):
        self._db = db

    def list_unclaimed(self) -> list[Job]:
        return job_storage.list_unclaimed(self._db)

    def find_by_id(self, job_id: str) -> Job | None:
        return job_storage.get_job(self._db, job_id)

    def claim(self, job_id: str, encoder_id: str) -> Job | None:
        return job_storage.claim_job(self._db, job_id, encoder_id)

    def update_progress(
        self, job_id: str, encoder_id: str, status: str, progress: dict
    ) -> bool:
        return job_storage.update_progress(self._db, job_id, encoder_id, status, progress)

    def complete(self, job_id: str, encoder_id: str, result: dict) -> bool:
        return job_storage.complete_job(self._db, job_id, encoder_id, result)

    def release_timed_out(self, stale_after: timedelta) -> int:
        return job_storage.release_timed_out(self._db, stale_after)

    def is_first_aid_claim(self) -> bool:
        return job_storage.count_aid_serviced(self._db) == 1

    def recent_by_status(
        self, status: JobStatus, limit: int = 10, newest_first: bool = True
    ) -> list[Job]:
        return job_storage.recent_by_status(self._db, status, limit, newest_first)

    def active_jobs(self, limit: int = 10) -> list[Job]:
        return job_storage.recent_by_status(self._db, JobStatus.RUNNING, limit)

    def available_jobs(self, limit: int = 10) -> list[Job]:
        return job_storage.recent_by_status(self._db, JobStatus.UNASSIGNED, limit)

    def recent_jobs(self, limit: int = 50) -> list[Job]:
        return job_storage.recent_by_status(self._db, None, limit)

    def completed_today(self) -> list[Job]:
        start_of_day = datetime.now(timezone.utc).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return job_storage.completed_since(self._db, start_of_day)

    def completed_jobs(self, limit: int = 20, offset: int = 0) -> list[Job]:
        return job_storage.recent_by_status(
            self._db, JobStatus.COMPLETED, offset + limit, sort_field="completed_at"
        )[offset:]

    def last_completed_jobs(self, limit: int = 10) -> list[Job]:
        return job_storage.completed_since(
            self._db, datetime.min.replace(tzinfo=timezone.utc), limit=limit
        )

    def jobs_by_encoder(
        self, encoder_id: str, limit: int = 20, offset: int = 0
    ) -> EncoderJobsPage:
        return job_storage.jobs_by_encoder(self._db, encoder_id, limit, offset)

    def active_encoders_count(self, sample: int = 10) -> int:
        return job_storage.active_encoders_count(self._db, sample)

    def encoder_last_activity(self, encoder_id: str) -> datetime | None:
        return job_storage.encoder_last_activity(self._db, encoder_id)

    def encoder_from_cluster(self, did_key: str) -> ClusterNode | None:
        return job_storage.get_cluster_node(self._db, did_key)


class TinyDBStatisticsAdapter:
    """StatisticsPort implementation computing rollups in Python."""

    def __init__(self, db: TinyDB):
        self._db = db

    def daily_rollup(self, since: datetime) -> list[DailyStatistic]:
        return rollup.daily_rollup(job_storage.all_jobs(self._db), since)

    def encoder_performance(
        self, since: datetime, encoder_id: str | None = None
    ) -> list[EncoderPerformance]:
        return rollup.encoder_performance(
            job_storage.all_jobs(self._db), since, encoder_id
        )
