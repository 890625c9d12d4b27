"""I/O abstraction protocols for encoder-ops.

Defines Protocol classes for the job store so the Aid coordinator and the
statistics service can be tested without real infrastructure. Production
code uses the MongoDB adapters; local runs and tests use TinyDB or fakes.
"""

from datetime import datetime, timedelta
from typing import Protocol

from encoder_ops.features.jobs.models import (
    ClusterNode,
    EncoderJobsPage,
    Job,
    JobStatus,
)
from encoder_ops.features.statistics.models import DailyStatistic, EncoderPerformance


class JobStorePort(Protocol):
    """Typed reads and guarded writes against the job collection.

    Reads return empty values and writes return False/None when the store is
    unreachable; none of these methods raise for connectivity problems.
    """

    # --- Aid fallback path ---

    def list_unclaimed(self) -> list[Job]: ...

    def find_by_id(self, job_id: str) -> Job | None: ...

    def claim(self, job_id: str, encoder_id: str) -> Job | None: ...

    def update_progress(
        self, job_id: str, encoder_id: str, status: str, progress: dict
    ) -> bool: ...

    def complete(self, job_id: str, encoder_id: str, result: dict) -> bool: ...

    def release_timed_out(self, stale_after: timedelta) -> int: ...

    def is_first_aid_claim(self) -> bool: ...

    # --- Dashboard reads ---

    def recent_by_status(
        self, status: JobStatus, limit: int = 10, newest_first: bool = True
    ) -> list[Job]: ...

    def active_jobs(self, limit: int = 10) -> list[Job]: ...

    def available_jobs(self, limit: int = 10) -> list[Job]: ...

    def recent_jobs(self, limit: int = 50) -> list[Job]: ...

    def completed_today(self) -> list[Job]: ...

    def completed_jobs(self, limit: int = 20, offset: int = 0) -> list[Job]: ...

    def last_completed_jobs(self, limit: int = 10) -> list[Job]: ...

    def jobs_by_encoder(
        self, encoder_id: str, limit: int = 20, offset: int = 0
    ) -> EncoderJobsPage: ...

    def active_encoders_count(self, sample: int = 10) -> int: ...

    def encoder_last_activity(self, encoder_id: str) -> datetime | None: ...

    def encoder_from_cluster(self, did_key: str) -> ClusterNode | None: ...


class StatisticsPort(Protocol):
    """Read-only rollups over finished jobs.

    Unlike JobStorePort, failures raise ``StatisticsError`` so that a broken
    rollup is never mistaken for a day without activity.
    """

    def daily_rollup(self, since: datetime) -> list[DailyStatistic]: ...

    def encoder_performance(
        self, since: datetime, encoder_id: str | None = None
    ) -> list[EncoderPerformance]: ...
