"""Aid fallback protocol models."""

from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, Field

# Claims with no progress ping for this long are returned to the queue.
AID_CLAIM_TIMEOUT = timedelta(hours=1)

SWEEP_INTERVAL_SECONDS = 300


class AidProgressStatus(str, Enum):
    """Statuses a holder may report while working on a job."""

    ASSIGNED = "assigned"
    RUNNING = "running"
    FAILED = "failed"


class ProgressReport(BaseModel):
    """Progress ping payload from an encoder."""

    status: AidProgressStatus
    download_pct: float = Field(default=0.0, ge=0, le=100)
    pct: float = Field(default=0.0, ge=0, le=100)

    def progress(self) -> dict:
        return {"download_pct": self.download_pct, "pct": self.pct}
