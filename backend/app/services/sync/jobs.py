from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.sync_job import SyncJobDetail, SyncJobSummary
from app.models_sqlalchemy.models import NormalizedData, RawApiData, SyncJob, SyncJobStatus, User

from .engine import SyncEngine
from .errors import AccessDenied, JobNotRetryable
from .job_state import get_job

MAX_PAGE_SIZE = 100


def _counts(db: Session, model, job_ids: List[str]) -> Dict[str, int]:
    if not job_ids:
        return {}
    rows = (
        db.query(model.sync_job_id, func.count(model.id))
        .filter(model.sync_job_id.in_(job_ids))
        .group_by(model.sync_job_id)
        .all()
    )
    return {job_id: count for job_id, count in rows}


def _to_detail(job: SyncJob, raw_count: int, normalized_count: int) -> SyncJobDetail:
    return SyncJobDetail(
        id=job.id,
        connector_id=job.connector_id,
        user_id=job.user_id,
        status=job.status,
        logs=list(job.logs or []),
        started_at=job.started_at,
        completed_at=job.completed_at,
        error=job.error,
        created_at=job.created_at,
        raw_record_count=raw_count,
        normalized_record_count=normalized_count,
    )


def list_jobs(
    db: Session,
    user: User,
    *,
    status: Optional[str] = None,
    connector_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[SyncJobDetail], int]:
    """Newest first. Non-admins only see jobs they triggered."""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    query = db.query(SyncJob)
    if not user.is_admin:
        query = query.filter(SyncJob.user_id == user.id)
    if status:
        query = query.filter(SyncJob.status == status.upper())
    if connector_id:
        query = query.filter(SyncJob.connector_id == connector_id)

    total = query.count()
    jobs = (
        query.order_by(SyncJob.created_at.desc(), SyncJob.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    job_ids = [j.id for j in jobs]
    raw_counts = _counts(db, RawApiData, job_ids)
    normalized_counts = _counts(db, NormalizedData, job_ids)
    return (
        [_to_detail(j, raw_counts.get(j.id, 0), normalized_counts.get(j.id, 0)) for j in jobs],
        total,
    )


def get_job_detail(db: Session, job_id: str, user: Optional[User] = None) -> SyncJobDetail:
    job = get_job(db, job_id)
    if user is not None and not user.is_admin and job.user_id != user.id:
        raise AccessDenied("Access denied to this job")

    raw_count = db.query(func.count(RawApiData.id)).filter(RawApiData.sync_job_id == job_id).scalar() or 0
    normalized_count = (
        db.query(func.count(NormalizedData.id)).filter(NormalizedData.sync_job_id == job_id).scalar() or 0
    )
    return _to_detail(job, raw_count, normalized_count)


async def retry_failed_job(db: Session, engine: SyncEngine, job_id: str, user: User) -> SyncJobSummary:
    """Start a new job for the connector of a FAILED job.

    Checked in order: the job exists, it is FAILED, the caller is an admin.
    """
    job = get_job(db, job_id)
    if job.status != SyncJobStatus.FAILED.value:
        raise JobNotRetryable(job_id, job.status)
    if not user.is_admin:
        raise AccessDenied("Only admins can retry jobs")
    return await engine.retry_job(job_id, user.id)
