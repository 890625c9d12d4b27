"""TinyDB storage operations for jobs.

Local/development backend for the job store. Every conditional write runs its
check and its update under one module lock, which is what makes claim,
progress and completion atomic for this backend (single process only; the
shared production store is MongoDB, see ``platform.mongo_adapter``).

Timestamps are stored as ISO-8601 strings in UTC.
"""

import threading
from datetime import datetime, timedelta, timezone

from tinydb import TinyDB, Query
from tinydb.table import Document, Table

from encoder_ops.features.jobs.models import (
    IN_FLIGHT_STATUS_VALUES,
    SUCCESS_STATUS_VALUES,
    ClusterNode,
    EncoderJobsPage,
    Job,
    JobStatus,
    normalize_cluster_node,
    normalize_job,
    parse_timestamp,
    status_values,
)

JOBS_TABLE = "jobs"
CLUSTER_NODES_TABLE = "cluster_nodes"

# Module-level lock protects all TinyDB operations in the jobs module
# against concurrent access from multiple threads.
_db_lock = threading.Lock()

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value) -> datetime | None:
    """Parse a stored timestamp to aware UTC; None when missing or unparsable."""
    return parse_timestamp(value)


def _jobs(db: TinyDB) -> Table:
    return db.table(JOBS_TABLE)


def _locate(table: Table, job_id: str) -> Document | None:
    """Find a job by its external ``id`` or, failing that, its doc_id."""
    Job_ = Query()
    found = table.get(Job_.id == job_id)
    if found is not None:
        return found
    if job_id.isdigit():
        return table.get(doc_id=int(job_id))
    return None


def _to_job(doc: Document) -> Job:
    raw = dict(doc)
    raw.setdefault("_id", str(doc.doc_id))
    return normalize_job(raw)


def _sort_key(field: str):
    return lambda doc: _ts(doc.get(field)) or _EPOCH


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def insert_job(db: TinyDB, record: dict) -> int:
    """Insert a raw job document (producer side; used by tooling and tests)."""
    with _db_lock:
        return _jobs(db).insert(record)


def get_job(db: TinyDB, job_id: str) -> Job | None:
    """Retrieve a single job by either id convention."""
    with _db_lock:
        doc = _locate(_jobs(db), job_id)
        return _to_job(doc) if doc is not None else None


def list_unclaimed(db: TinyDB) -> list[Job]:
    """Return pending jobs nobody holds, oldest first."""
    with _db_lock:
        Job_ = Query()
        docs = _jobs(db).search(Job_.status == JobStatus.PENDING.value)
        docs = [d for d in docs if d.get("assigned_to") is None]
        docs.sort(key=_sort_key("created_at"))
        return [_to_job(d) for d in docs]


def recent_by_status(
    db: TinyDB,
    status: JobStatus | None,
    limit: int = 10,
    newest_first: bool = True,
    sort_field: str = "created_at",
) -> list[Job]:
    """Return jobs with ``status`` (any status when None) sorted on ``sort_field``."""
    with _db_lock:
        table = _jobs(db)
        if status is None:
            docs = table.all()
        else:
            Job_ = Query()
            docs = table.search(Job_.status.one_of(status_values(status)))
        docs.sort(key=_sort_key(sort_field), reverse=newest_first)
        return [_to_job(d) for d in docs[:limit]]


def completed_since(
    db: TinyDB, since: datetime, limit: int | None = None, offset: int = 0
) -> list[Job]:
    """Return successful jobs completed at or after ``since``, newest first."""
    with _db_lock:
        Job_ = Query()
        docs = _jobs(db).search(Job_.status.one_of(list(SUCCESS_STATUS_VALUES)))
        stamped = [(d, _ts(d.get("completed_at"))) for d in docs]
        docs = [d for d, ts in stamped if ts is not None and ts >= since]
        docs.sort(key=_sort_key("completed_at"), reverse=True)
        end = None if limit is None else offset + limit
        return [_to_job(d) for d in docs[offset:end]]


def jobs_by_encoder(
    db: TinyDB, encoder_id: str, limit: int = 20, offset: int = 0
) -> EncoderJobsPage:
    """Return a page of an encoder's finished or in-flight jobs."""
    with _db_lock:
        Job_ = Query()
        wanted = [*SUCCESS_STATUS_VALUES, *IN_FLIGHT_STATUS_VALUES]
        docs = _jobs(db).search(
            (Job_.assigned_to == encoder_id) & Job_.status.one_of(wanted)
        )
        docs.sort(
            key=lambda d: (
                _ts(d.get("completed_at")) or _EPOCH,
                _ts(d.get("created_at")) or _EPOCH,
            ),
            reverse=True,
        )
        page = docs[offset : offset + limit]
        return EncoderJobsPage(jobs=[_to_job(d) for d in page], total=len(docs))


def active_encoders_count(db: TinyDB, sample: int = 10) -> int:
    """Count distinct holders among the ``sample`` newest assigned jobs."""
    with _db_lock:
        docs = [d for d in _jobs(db).all() if d.get("assigned_to")]
        docs.sort(key=_sort_key("created_at"), reverse=True)
        return len({d["assigned_to"] for d in docs[:sample]})


def encoder_last_activity(db: TinyDB, encoder_id: str) -> datetime | None:
    """Most recent activity timestamp of an encoder's latest job."""
    with _db_lock:
        Job_ = Query()
        docs = _jobs(db).search(Job_.assigned_to == encoder_id)
        if not docs:
            return None
        docs.sort(
            key=lambda d: (
                _ts(d.get("completed_at")) or _EPOCH,
                _ts(d.get("last_pinged")) or _EPOCH,
                _ts(d.get("assigned_date")) or _EPOCH,
            ),
            reverse=True,
        )
        latest = docs[0]
        for field in ("completed_at", "last_pinged", "assigned_date", "created_at"):
            value = _ts(latest.get(field))
            if value is not None:
                return value
        return None


def get_cluster_node(db: TinyDB, did_key: str) -> ClusterNode | None:
    """Look up an encoder node registration by DID."""
    with _db_lock:
        Node = Query()
        doc = db.table(CLUSTER_NODES_TABLE).get(Node.id == did_key)
        return normalize_cluster_node(dict(doc)) if doc is not None else None


def count_aid_serviced(db: TinyDB) -> int:
    """Number of jobs currently flagged as serviced by the Aid path."""
    with _db_lock:
        Job_ = Query()
        return _jobs(db).count(Job_.serviced_by_aid == True)  # noqa: E712


def all_jobs(db: TinyDB) -> list[Job]:
    """Every job in the table (statistics input)."""
    with _db_lock:
        return [_to_job(d) for d in _jobs(db).all()]


# ---------------------------------------------------------------------------
# Guarded writes
# ---------------------------------------------------------------------------


def claim_job(db: TinyDB, job_id: str, encoder_id: str) -> Job | None:
    """Assign a pending, unheld job to ``encoder_id``.

    Returns the updated job, or None when the job is missing, not pending or
    already held.
    """
    with _db_lock:
        table = _jobs(db)
        doc = _locate(table, job_id)
        if doc is None:
            return None
        if doc.get("status") != JobStatus.PENDING.value or doc.get("assigned_to") is not None:
            return None

        now = _now().isoformat()
        fields = {
            "status": JobStatus.ASSIGNED.value,
            "assigned_to": encoder_id,
            "assigned_date": now,
            "serviced_by_aid": True,
            "aid_claimed_at": now,
        }
        table.update(fields, doc_ids=[doc.doc_id])
        return _to_job(table.get(doc_id=doc.doc_id))


def _owned_by(doc: Document | None, encoder_id: str) -> bool:
    return (
        doc is not None
        and doc.get("assigned_to") == encoder_id
        and doc.get("serviced_by_aid") is True
    )


def update_progress(
    db: TinyDB, job_id: str, encoder_id: str, status: str, progress: dict
) -> bool:
    """Record a progress ping from the job's Aid holder."""
    with _db_lock:
        table = _jobs(db)
        doc = _locate(table, job_id)
        if not _owned_by(doc, encoder_id):
            return False
        if doc.get("status") not in IN_FLIGHT_STATUS_VALUES:
            return False

        table.update(
            {
                "status": status,
                "progress": dict(progress),
                "last_pinged": _now().isoformat(),
            },
            doc_ids=[doc.doc_id],
        )
        return True


def complete_job(db: TinyDB, job_id: str, encoder_id: str, result: dict) -> bool:
    """Mark the job completed for its Aid holder.

    ``completed_at`` is only written the first time.
    """
    with _db_lock:
        table = _jobs(db)
        doc = _locate(table, job_id)
        if not _owned_by(doc, encoder_id):
            return False
        if doc.get("status") not in (*IN_FLIGHT_STATUS_VALUES, JobStatus.COMPLETED.value):
            return False

        fields = {
            "status": JobStatus.COMPLETED.value,
            "result": result,
            "progress": 100,
        }
        if _ts(doc.get("completed_at")) is None:
            fields["completed_at"] = _now().isoformat()
        table.update(fields, doc_ids=[doc.doc_id])
        return True


_RELEASED_FIELDS = (
    "assigned_to",
    "assigned_date",
    "serviced_by_aid",
    "aid_claimed_at",
    "last_pinged",
)


def _is_stale(doc: dict, cutoff: datetime) -> bool:
    if doc.get("serviced_by_aid") is not True:
        return False
    if doc.get("status") not in IN_FLIGHT_STATUS_VALUES:
        return False
    last_pinged = _ts(doc.get("last_pinged"))
    if last_pinged is not None:
        return last_pinged < cutoff
    claimed = _ts(doc.get("aid_claimed_at"))
    return claimed is not None and claimed < cutoff


def _release(doc: dict) -> None:
    doc["status"] = JobStatus.PENDING.value
    doc["progress"] = 0
    for field in _RELEASED_FIELDS:
        doc.pop(field, None)


def release_timed_out(db: TinyDB, stale_after: timedelta) -> int:
    """Return abandoned Aid claims to the pending queue.

    A claim is abandoned when its last ping, or its claim time if it never
    pinged, is older than ``stale_after``.
    """
    with _db_lock:
        cutoff = _now() - stale_after
        released = _jobs(db).update(_release, lambda doc: _is_stale(doc, cutoff))
        return len(released)
