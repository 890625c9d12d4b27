"""Job domain models and the read-boundary normalizer.

Job documents in the shared store have drifted over time: two id
conventions, two spellings of the success status, flat legacy fields next to
structured ones, and ``progress`` stored either as a number or as a
``{download_pct, pct}`` object. ``normalize_job`` is the single place where a
raw document becomes a typed ``Job``; nothing past it sees store types.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from encoder_ops.platform.logging_config import get_logger

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Status of an encoding job."""

    PENDING = "pending"
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    # Read-only: a producer state this code does not know (kept in Job.raw_status).
    UNKNOWN = "unknown"


# Historical spelling of COMPLETED still present in older documents.
LEGACY_COMPLETE = "complete"

SUCCESS_STATUS_VALUES = (JobStatus.COMPLETED.value, LEGACY_COMPLETE)
FINISHED_STATUS_VALUES = (*SUCCESS_STATUS_VALUES, JobStatus.FAILED.value)
IN_FLIGHT_STATUS_VALUES = (JobStatus.ASSIGNED.value, JobStatus.RUNNING.value)


def status_values(status: JobStatus) -> list[str]:
    """Raw store values that mean ``status``."""
    if status == JobStatus.COMPLETED:
        return list(SUCCESS_STATUS_VALUES)
    return [status.value]


def utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (the store keeps UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Progress(BaseModel):
    """Two-phase completion percentages reported by an encoder."""

    download_pct: float = Field(default=0.0, ge=0, le=100)
    pct: float = Field(default=0.0, ge=0, le=100)


class JobMetadata(BaseModel):
    video_owner: str = ""
    video_permlink: str = ""


class JobInput(BaseModel):
    uri: str = ""
    size: int = 0


class Job(BaseModel):
    """Typed view of one job document."""

    id: str
    status: JobStatus
    raw_status: str | None = None
    created_at: datetime | None = None
    assigned_to: str | None = None
    assigned_date: datetime | None = None
    last_pinged: datetime | None = None
    completed_at: datetime | None = None
    progress: Progress | None = None
    result: dict[str, Any] | None = None
    metadata: JobMetadata = JobMetadata()
    input: JobInput = JobInput()
    encoding_time: float | None = None
    current_quality: str | None = None
    current_codec: str | None = None
    error_message: str | None = None
    serviced_by_aid: bool = False
    aid_claimed_at: datetime | None = None

    @field_validator(
        "created_at",
        "assigned_date",
        "last_pinged",
        "completed_at",
        "aid_claimed_at",
    )
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return utc(value)

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED


class EncoderJobsPage(BaseModel):
    """One page of an encoder's jobs plus the unpaginated total."""

    jobs: list[Job] = []
    total: int = 0


class ClusterNode(BaseModel):
    """Encoder node registration from the ``cluster_nodes`` collection."""

    did_key: str
    node_name: str | None = None
    hive_account: str | None = None
    peer_id: str | None = None
    commit_hash: str | None = None
    banned: bool = False
    first_seen: datetime | None = None
    last_seen: datetime | None = None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """Read a stored timestamp (datetime or ISO-8601 string) as aware UTC.

    Returns None for missing or unparsable values.
    """
    if isinstance(value, datetime):
        return utc(value)
    if not isinstance(value, str) or not value:
        return None
    try:
        return utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def _skipped(job_id: str, field: str, value: Any) -> None:
    logger.warning(
        "job_normalize_skipped_field",
        job_id=job_id,
        field=field,
        value=repr(value)[:80],
    )


def _normalize_status(raw: Any) -> tuple[JobStatus, str | None]:
    if raw == LEGACY_COMPLETE:
        return JobStatus.COMPLETED, None
    try:
        return JobStatus(raw), None
    except ValueError:
        return JobStatus.UNKNOWN, None if raw is None else str(raw)


class _FieldReader:
    """Typed accessors over one raw document.

    Values of the wrong shape fall back to the field default and are logged,
    so a single drifted document never fails a read.
    """

    def __init__(self, doc: dict, job_id: str):
        self.doc = doc
        self.job_id = job_id

    def mapping(self, field: str) -> dict:
        value = self.doc.get(field)
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        _skipped(self.job_id, field, value)
        return {}

    def timestamp(self, field: str) -> datetime | None:
        value = self.doc.get(field)
        parsed = parse_timestamp(value)
        if parsed is None and value not in (None, ""):
            _skipped(self.job_id, field, value)
        return parsed

    def text(self, field: str, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        _skipped(self.job_id, field, value)
        return None

    def number(self, field: str, value: Any, cast=float):
        if value is None:
            return None
        try:
            return cast(value)
        except (TypeError, ValueError, OverflowError):
            _skipped(self.job_id, field, value)
            return None

    def percent(self, field: str, value: Any) -> float:
        pct = self.number(field, value)
        if pct is None or not math.isfinite(pct):
            return 0.0
        return min(max(pct, 0.0), 100.0)

    def progress(self, field: str) -> Progress | None:
        value = self.doc.get(field)
        if value is None:
            return None
        if isinstance(value, dict):
            return Progress(
                download_pct=self.percent(f"{field}.download_pct", value.get("download_pct")),
                pct=self.percent(f"{field}.pct", value.get("pct")),
            )
        # Numeric form: written as 100 on completion and 0 on release.
        pct = self.percent(field, value)
        return Progress(download_pct=100.0 if pct > 0 else 0.0, pct=pct)


def normalize_job(doc: dict) -> Job:
    """Convert a raw store document into a ``Job``.

    Accepts both MongoDB documents (``_id`` ObjectId, datetime values) and
    TinyDB documents (ISO-8601 strings). Never raises for field contents:
    malformed values fall back to the field default and are logged as
    ``job_normalize_skipped_field``.
    """
    raw_id = doc.get("id") or doc.get("_id")
    job_id = str(raw_id) if raw_id is not None else ""
    read = _FieldReader(doc, job_id)
    metadata = read.mapping("metadata")
    input_ = read.mapping("input")

    result = doc.get("result")
    if result is not None and not isinstance(result, dict):
        _skipped(job_id, "result", result)
        result = None
    if result is None and doc.get("ipfs_cid"):
        result = {"ipfs_cid": doc["ipfs_cid"]}

    status, raw_status = _normalize_status(doc.get("status"))

    return Job(
        id=job_id,
        status=status,
        raw_status=raw_status,
        created_at=read.timestamp("created_at"),
        assigned_to=read.text("assigned_to", doc.get("assigned_to") or doc.get("encoder_id")),
        assigned_date=read.timestamp("assigned_date"),
        last_pinged=read.timestamp("last_pinged"),
        completed_at=read.timestamp("completed_at"),
        progress=read.progress("progress"),
        result=result,
        metadata=JobMetadata(
            video_owner=read.text(
                "metadata.video_owner", metadata.get("video_owner") or doc.get("owner")
            )
            or "",
            video_permlink=read.text(
                "metadata.video_permlink",
                metadata.get("video_permlink") or doc.get("permlink"),
            )
            or "",
        ),
        input=JobInput(
            uri=read.text("input.uri", input_.get("uri") or doc.get("input_uri")) or "",
            size=read.number(
                "input.size", input_.get("size") or doc.get("input_size"), cast=int
            )
            or 0,
        ),
        encoding_time=read.number("encoding_time", doc.get("encoding_time")),
        current_quality=read.text("current_quality", doc.get("current_quality")),
        current_codec=read.text("current_codec", doc.get("current_codec")),
        error_message=read.text("error_message", doc.get("error_message")),
        serviced_by_aid=bool(doc.get("serviced_by_aid", False)),
        aid_claimed_at=read.timestamp("aid_claimed_at"),
    )


def normalize_cluster_node(doc: dict) -> ClusterNode:
    """Convert a ``cluster_nodes`` document into a ``ClusterNode``."""
    crypto_accounts = doc.get("cryptoAccounts")
    return ClusterNode(
        did_key=str(doc.get("id", "")),
        node_name=doc.get("name"),
        hive_account=(
            crypto_accounts.get("hive") if isinstance(crypto_accounts, dict) else None
        ),
        peer_id=doc.get("peer_id"),
        commit_hash=doc.get("commit_hash"),
        banned=bool(doc.get("banned", False)),
        first_seen=parse_timestamp(doc.get("first_seen")),
        last_seen=parse_timestamp(doc.get("last_seen")),
    )
