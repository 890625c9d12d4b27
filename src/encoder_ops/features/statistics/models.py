"""Derived statistics records.

Durations are seconds; ``success_rate`` is a fraction in [0, 1].
"""

from pydantic import BaseModel, Field


class EncoderCount(BaseModel):
    encoder_id: str | None = None
    count: int = 0


class QualityCount(BaseModel):
    quality: str | None = None
    count: int = 0


class DailyStatistic(BaseModel):
    """Rollup of jobs whose terminal event fell on ``date`` (UTC)."""

    date: str  # YYYY-MM-DD
    videos_encoded: int = 0
    completed: int = 0
    failed: int = 0
    by_encoder: list[EncoderCount] = []
    by_quality: list[QualityCount] = []
    total_encoding_time: float = 0.0
    average_encoding_time: float = 0.0
    success_rate: float = Field(default=0.0, ge=0, le=1)


class EncoderPerformance(BaseModel):
    """Per-encoder totals over a trailing window."""

    encoder_id: str
    jobs_completed: int = 0
    jobs_failed: int = 0
    total_jobs: int = 0
    total_encoding_time: float = 0.0
    average_encoding_time: float = 0.0
    success_rate: float = Field(default=0.0, ge=0, le=1)
