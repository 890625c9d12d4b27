"""Statistics aggregator.

Turns a trailing window in days into a cutoff and delegates to the configured
``StatisticsPort``. Failures are logged and re-raised as ``StatisticsError``
so reporting surfaces can flag them instead of showing zeros.
"""

from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from encoder_ops.features.statistics.errors import StatisticsError
from encoder_ops.features.statistics.models import DailyStatistic, EncoderPerformance
from encoder_ops.platform.logging_config import get_logger
from encoder_ops.platform.protocols import StatisticsPort

logger = get_logger(__name__)

DEFAULT_DAILY_WINDOW_DAYS = 30
DEFAULT_ENCODER_WINDOW_DAYS = 7


def window_start(window_days: int, now: datetime | None = None) -> datetime:
    """Cutoff for a trailing window of ``window_days`` days."""
    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days <= 0:
        raise ValueError(f"window_days must be a positive integer, got {window_days!r}")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=window_days)


class StatisticsAggregator:
    """Read-only rollups over the job store."""

    def __init__(self, port: StatisticsPort):
        self._port = port

    def daily_rollup(
        self, window_days: int = DEFAULT_DAILY_WINDOW_DAYS
    ) -> list[DailyStatistic]:
        """Per-day statistics for the last ``window_days`` days, newest first."""
        since = window_start(window_days)
        try:
            return self._port.daily_rollup(since)
        except StatisticsError as e:
            logger.error("daily_rollup_failed", window_days=window_days, error=str(e))
            raise
        except ValidationError as e:
            logger.error("daily_rollup_malformed", window_days=window_days, error=str(e))
            raise StatisticsError(f"Malformed daily statistics: {e}") from e

    def encoder_performance(
        self,
        window_days: int = DEFAULT_ENCODER_WINDOW_DAYS,
        encoder_id: str | None = None,
    ) -> list[EncoderPerformance]:
        """Per-encoder statistics, most completed jobs first."""
        since = window_start(window_days)
        try:
            return self._port.encoder_performance(since, encoder_id)
        except StatisticsError as e:
            logger.error(
                "encoder_performance_failed",
                window_days=window_days,
                encoder_id=encoder_id,
                error=str(e),
            )
            raise
        except ValidationError as e:
            logger.error(
                "encoder_performance_malformed",
                window_days=window_days,
                encoder_id=encoder_id,
                error=str(e),
            )
            raise StatisticsError(f"Malformed encoder performance: {e}") from e
