"""Rollup computations shared by both statistics backends.

``daily_rollup`` / ``encoder_performance`` compute in Python over typed jobs
(TinyDB backend). The ``finalize_*`` helpers turn raw aggregation rows, as
produced by the MongoDB pipelines in ``pipelines.py`` or by the Python
grouping below, into validated records. Both paths therefore share one
definition of the output shape.
"""

from collections import defaultdict
from datetime import datetime

from encoder_ops.features.jobs.models import Job, JobStatus
from encoder_ops.features.statistics.models import (
    DailyStatistic,
    EncoderCount,
    EncoderPerformance,
    QualityCount,
)

DATE_FORMAT = "%Y-%m-%d"


def in_window(job: Job, since: datetime) -> bool:
    """True when the job's terminal event happened at or after ``since``.

    Successes count by ``completed_at``; failures by ``completed_at`` or,
    when that is missing, ``last_pinged``.
    """
    if job.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
        return False
    if job.completed_at is not None and job.completed_at >= since:
        return True
    return (
        job.status == JobStatus.FAILED
        and job.last_pinged is not None
        and job.last_pinged >= since
    )


def held_seconds(job: Job) -> float:
    """Time between assignment and completion, 0 when either is unknown."""
    if job.assigned_date is None or job.completed_at is None:
        return 0.0
    return (job.completed_at - job.assigned_date).total_seconds()


def terminal_date(job: Job) -> str | None:
    event = job.completed_at or job.last_pinged
    return event.strftime(DATE_FORMAT) if event is not None else None


def _ratio(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


def _fold(entries: list[dict], key: str) -> list[tuple[str | None, int]]:
    totals: dict[str | None, int] = defaultdict(int)
    for entry in entries:
        totals[entry.get(key)] += int(entry.get("count") or 0)
    return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0] or ""))


# ---------------------------------------------------------------------------
# Row finalization
# ---------------------------------------------------------------------------


def finalize_daily(row: dict) -> DailyStatistic:
    """Build a DailyStatistic from a per-date aggregation row.

    ``by_encoder`` / ``by_quality`` arrive with one entry per
    (encoder, quality, status) group and are folded to one entry per key.
    """
    videos_encoded = int(row.get("videos_encoded") or 0)
    completed = int(row.get("completed") or 0)
    return DailyStatistic(
        date=row["_id"],
        videos_encoded=videos_encoded,
        completed=completed,
        failed=int(row.get("failed") or 0),
        by_encoder=[
            EncoderCount(encoder_id=k, count=c)
            for k, c in _fold(row.get("by_encoder") or [], "encoder_id")
        ],
        by_quality=[
            QualityCount(quality=k, count=c)
            for k, c in _fold(row.get("by_quality") or [], "quality")
        ],
        total_encoding_time=float(row.get("total_encoding_time") or 0.0),
        average_encoding_time=float(row.get("average_encoding_time") or 0.0),
        success_rate=_ratio(completed, videos_encoded),
    )


def finalize_performance(row: dict) -> EncoderPerformance:
    """Build an EncoderPerformance from a per-encoder aggregation row."""
    total_jobs = int(row.get("total_jobs") or 0)
    jobs_completed = int(row.get("jobs_completed") or 0)
    return EncoderPerformance(
        encoder_id=str(row["_id"]),
        jobs_completed=jobs_completed,
        jobs_failed=int(row.get("jobs_failed") or 0),
        total_jobs=total_jobs,
        total_encoding_time=float(row.get("total_encoding_time") or 0.0),
        average_encoding_time=float(row.get("average_encoding_time") or 0.0),
        success_rate=_ratio(jobs_completed, total_jobs),
    )


# ---------------------------------------------------------------------------
# In-process rollups
# ---------------------------------------------------------------------------


def daily_rollup(jobs: list[Job], since: datetime) -> list[DailyStatistic]:
    """Per-day rollup of jobs finished since ``since``, newest day first."""
    groups: dict[tuple, list[float]] = defaultdict(list)
    for job in jobs:
        if not in_window(job, since):
            continue
        key = (terminal_date(job), job.assigned_to, job.current_quality, job.status)
        groups[key].append(held_seconds(job))

    days: dict[str, dict] = {}
    for (date, encoder_id, quality, status), times in groups.items():
        day = days.setdefault(
            date,
            {
                "_id": date,
                "videos_encoded": 0,
                "completed": 0,
                "failed": 0,
                "by_encoder": [],
                "by_quality": [],
                "total_encoding_time": 0.0,
                "group_averages": [],
            },
        )
        count = len(times)
        day["videos_encoded"] += count
        if status == JobStatus.COMPLETED:
            day["completed"] += count
        else:
            day["failed"] += count
        day["by_encoder"].append({"encoder_id": encoder_id, "count": count})
        day["by_quality"].append({"quality": quality, "count": count})
        day["total_encoding_time"] += sum(times)
        day["group_averages"].append(sum(times) / count)

    for day in days.values():
        averages = day.pop("group_averages")
        day["average_encoding_time"] = sum(averages) / len(averages)

    rows = sorted(days.values(), key=lambda d: d["_id"], reverse=True)
    return [finalize_daily(row) for row in rows]


def encoder_performance(
    jobs: list[Job], since: datetime, encoder_id: str | None = None
) -> list[EncoderPerformance]:
    """Per-encoder totals for jobs finished since ``since``.

    Sorted by completed jobs, most first.
    """
    rows: dict[str, dict] = {}
    for job in jobs:
        if not job.assigned_to or not in_window(job, since):
            continue
        if encoder_id is not None and job.assigned_to != encoder_id:
            continue
        row = rows.setdefault(
            job.assigned_to,
            {
                "_id": job.assigned_to,
                "jobs_completed": 0,
                "jobs_failed": 0,
                "total_jobs": 0,
                "total_encoding_time": 0.0,
            },
        )
        row["total_jobs"] += 1
        if job.status == JobStatus.COMPLETED:
            row["jobs_completed"] += 1
        else:
            row["jobs_failed"] += 1
        row["total_encoding_time"] += job.encoding_time or 0.0

    for row in rows.values():
        row["average_encoding_time"] = row["total_encoding_time"] / row["total_jobs"]

    ordered = sorted(rows.values(), key=lambda r: (-r["jobs_completed"], r["_id"]))
    return [finalize_performance(row) for row in ordered]
