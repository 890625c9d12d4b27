"""MongoDB aggregation pipelines for the statistics views.

Rows produced here are raw; ``rollup.finalize_daily`` and
``rollup.finalize_performance`` validate and fold them.
"""

from datetime import datetime

from encoder_ops.features.jobs.models import (
    FINISHED_STATUS_VALUES,
    SUCCESS_STATUS_VALUES,
    JobStatus,
)

FAILED = JobStatus.FAILED.value


def window_match(since: datetime) -> dict:
    """Finished jobs whose terminal event is at or after ``since``."""
    return {
        "status": {"$in": list(FINISHED_STATUS_VALUES)},
        "$or": [
            {"completed_at": {"$gte": since}},
            {"status": FAILED, "last_pinged": {"$gte": since}},
        ],
    }


def _is_date(field: str) -> dict:
    return {"$eq": [{"$type": f"${field}"}, "date"]}


def _success_flag(status_expr: str) -> dict:
    return {"$in": [status_expr, list(SUCCESS_STATUS_VALUES)]}


def daily_statistics_pipeline(since: datetime) -> list[dict]:
    """Group finished jobs by UTC day.

    Encoding time is derived from the store's own timestamps
    (``completed_at - assigned_date``), not from the self-reported
    ``encoding_time`` field.
    """
    return [
        {"$match": window_match(since)},
        {
            "$addFields": {
                "calculated_encoding_time": {
                    "$cond": [
                        {"$and": [_is_date("assigned_date"), _is_date("completed_at")]},
                        {
                            "$divide": [
                                {"$subtract": ["$completed_at", "$assigned_date"]},
                                1000,
                            ]
                        },
                        0,
                    ]
                }
            }
        },
        {
            "$group": {
                "_id": {
                    "date": {
                        "$dateToString": {
                            "format": "%Y-%m-%d",
                            "date": {"$ifNull": ["$completed_at", "$last_pinged"]},
                            "timezone": "UTC",
                        }
                    },
                    "encoder_id": "$assigned_to",
                    "quality": "$current_quality",
                    "status": "$status",
                },
                "count": {"$sum": 1},
                "total_encoding_time": {"$sum": "$calculated_encoding_time"},
                "avg_encoding_time": {"$avg": "$calculated_encoding_time"},
            }
        },
        {
            "$group": {
                "_id": "$_id.date",
                "videos_encoded": {"$sum": "$count"},
                "completed": {
                    "$sum": {"$cond": [_success_flag("$_id.status"), "$count", 0]}
                },
                "failed": {
                    "$sum": {"$cond": [{"$eq": ["$_id.status", FAILED]}, "$count", 0]}
                },
                "by_encoder": {
                    "$push": {"encoder_id": "$_id.encoder_id", "count": "$count"}
                },
                "by_quality": {
                    "$push": {"quality": "$_id.quality", "count": "$count"}
                },
                "total_encoding_time": {"$sum": "$total_encoding_time"},
                "average_encoding_time": {"$avg": "$avg_encoding_time"},
            }
        },
        {"$sort": {"_id": -1}},
    ]


def encoder_performance_pipeline(
    since: datetime, encoder_id: str | None = None
) -> list[dict]:
    """Group finished jobs by the encoder that held them."""
    match = window_match(since)
    match["assigned_to"] = encoder_id if encoder_id else {"$exists": True, "$ne": None}

    return [
        {"$match": match},
        {
            "$group": {
                "_id": "$assigned_to",
                "jobs_completed": {"$sum": {"$cond": [_success_flag("$status"), 1, 0]}},
                "jobs_failed": {
                    "$sum": {"$cond": [{"$eq": ["$status", FAILED]}, 1, 0]}
                },
                "total_jobs": {"$sum": 1},
                "total_encoding_time": {"$sum": {"$ifNull": ["$encoding_time", 0]}},
                "average_encoding_time": {"$avg": {"$ifNull": ["$encoding_time", 0]}},
            }
        },
        {"$sort": {"jobs_completed": -1, "_id": 1}},
    ]
