"""SyncJob lifecycle and the per-job append-only log.

PENDING -> RUNNING -> SUCCESS | FAILED. Terminal jobs are never reopened;
retrying a failed job creates a new one.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import SyncJob, SyncJobStatus
from app.utils.logger import get_logger

from .errors import InvalidJobTransition, JobNotFound

logger = get_logger("jobs")

LOG_INFO = "info"
LOG_ERROR = "error"

_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SyncJobStatus.PENDING.value: frozenset({SyncJobStatus.RUNNING.value}),
    SyncJobStatus.RUNNING.value: frozenset({SyncJobStatus.SUCCESS.value, SyncJobStatus.FAILED.value}),
    SyncJobStatus.SUCCESS.value: frozenset(),
    SyncJobStatus.FAILED.value: frozenset(),
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp() -> str:
    return _now_utc().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_job(db: Session, *, connector_id: str, user_id: str) -> SyncJob:
    job = SyncJob(
        connector_id=connector_id,
        user_id=user_id,
        status=SyncJobStatus.PENDING.value,
        logs=[],
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("Created sync job id=%s connector=%s user=%s", job.id, connector_id, user_id)
    return job


def get_job(db: Session, job_id: str) -> SyncJob:
    job = db.get(SyncJob, job_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def _transition(job: SyncJob, target: SyncJobStatus) -> None:
    if not can_transition(job.status, target.value):
        raise InvalidJobTransition(job.id, job.status, target.value)
    job.status = target.value


def mark_running(db: Session, job: SyncJob) -> None:
    _transition(job, SyncJobStatus.RUNNING)
    job.started_at = _now_utc()
    db.commit()


def mark_success(db: Session, job: SyncJob) -> None:
    _transition(job, SyncJobStatus.SUCCESS)
    job.completed_at = _now_utc()
    db.commit()
    logger.info("Sync job id=%s completed", job.id)


def mark_failed(db: Session, job: SyncJob, *, error_message: str) -> None:
    _transition(job, SyncJobStatus.FAILED)
    job.completed_at = _now_utc()
    job.error = error_message or "Unknown error"
    db.commit()
    logger.error("Sync job id=%s failed: %s", job.id, job.error)


def add_log(db: Session, job_id: str, level: str, message: str) -> Optional[dict]:
    """Append one entry to the job's log list (read-modify-write).

    Concurrent writers would overwrite each other; only the worker that owns
    the job writes to it.
    """
    job = db.get(SyncJob, job_id)
    if job is None:
        logger.warning("Dropping log line for missing job id=%s: %s", job_id, message)
        return None

    entry = {"timestamp": _timestamp(), "level": level, "message": message}
    # Assign a new list so the JSON column is flagged dirty.
    job.logs = list(job.logs or []) + [entry]
    db.commit()

    if level == LOG_ERROR:
        logger.error("[job %s] %s", job_id, message)
    else:
        logger.info("[job %s] %s", job_id, message)
    return entry
