"""Aid fallback claim protocol.

When the dispatch gateway is degraded, encoders claim work straight from the
job store through this coordinator:

    list_available → claim → report_progress* → complete

A holder that stops pinging for ``AID_CLAIM_TIMEOUT`` loses its claim at the
next sweep (``release_timed_out``), which puts the job back in the queue.

The coordinator keeps no state of its own. Mutual exclusion comes from the
store's conditional updates, so any number of coordinator instances (in any
number of processes) can run side by side. A rejected claim, a wrong holder
and a missing job all come back as the same ``None``/``False`` outcome.
"""

import threading
from typing import Callable

from encoder_ops.features.aid.models import (
    AID_CLAIM_TIMEOUT,
    SWEEP_INTERVAL_SECONDS,
    AidProgressStatus,
    ProgressReport,
)
from encoder_ops.features.jobs.models import Job
from encoder_ops.platform.logging_config import get_logger, job_context
from encoder_ops.platform.protocols import JobStorePort

logger = get_logger(__name__)


def _log_first_claim(job: Job) -> None:
    logger.warning(
        "aid_fallback_activated",
        job_id=job.id,
        encoder_id=job.assigned_to,
        message="First job serviced through the Aid fallback path",
    )


class AidCoordinator:
    """Runs the Aid protocol against an injected JobStorePort.

    Args:
        job_store: Store adapter used for every read and state change.
        on_first_claim: Called with the claimed job when it is the first job
            ever serviced by Aid (operator notification). Defaults to a
            warning log entry.
    """

    def __init__(
        self,
        job_store: JobStorePort,
        on_first_claim: Callable[[Job], None] | None = None,
    ):
        self._store = job_store
        self._on_first_claim = on_first_claim or _log_first_claim

    def list_available(self) -> list[Job]:
        """Unclaimed pending jobs, oldest first."""
        return self._store.list_unclaimed()

    def claim(self, job_id: str, encoder_id: str) -> Job | None:
        """Try to take ``job_id`` for ``encoder_id``.

        Losing a race is an expected outcome and returns None.
        """
        if not job_id or not encoder_id:
            return None

        with job_context(job_id, encoder_id):
            job = self._store.claim(job_id, encoder_id)
            if job is None:
                return None

            if self._store.is_first_aid_claim():
                try:
                    self._on_first_claim(job)
                except Exception as e:
                    # The claim stands even if the notification cannot be sent.
                    logger.error("aid_first_claim_notify_failed", error=str(e))
            return job

    def report_progress(
        self,
        job_id: str,
        encoder_id: str,
        status: AidProgressStatus | str,
        progress: dict,
    ) -> bool:
        """Record a progress ping from the job's holder.

        Raises:
            pydantic.ValidationError: unknown status or percentages outside 0–100.
        """
        report = ProgressReport.model_validate({**(progress or {}), "status": status})
        if not job_id or not encoder_id:
            return False
        with job_context(job_id, encoder_id):
            return self._store.update_progress(
                job_id, encoder_id, report.status.value, report.progress()
            )

    def complete(self, job_id: str, encoder_id: str, result: dict) -> bool:
        """Finish the job for its holder with an arbitrary result payload."""
        if not job_id or not encoder_id:
            return False
        with job_context(job_id, encoder_id):
            return self._store.complete(job_id, encoder_id, dict(result or {}))

    def release_timed_out(self) -> int:
        """Return abandoned claims to the queue. Returns how many were released."""
        return self._store.release_timed_out(AID_CLAIM_TIMEOUT)

    def run_sweeper(
        self,
        stop_event: threading.Event,
        interval: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Call ``release_timed_out`` every ``interval`` seconds until stopped."""
        logger.info("aid_sweeper_started", interval=interval)
        while not stop_event.is_set():
            try:
                released = self.release_timed_out()
                if released:
                    logger.info("aid_sweep_released", count=released)
            except Exception as e:
                logger.error("aid_sweep_failed", error=str(e))
            stop_event.wait(interval)
        logger.info("aid_sweeper_stopped")
