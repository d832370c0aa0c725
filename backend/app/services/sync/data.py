"""Read access to what sync jobs stored.

Raw response bodies are admin-only; normalized records are scoped to the
jobs a user triggered unless the user is an admin.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.models.records import NormalizedRecord, RawRecord
from app.models_sqlalchemy.models import NormalizedData, RawApiData, SyncJob, User

from .errors import AccessDenied

MAX_PAGE_SIZE = 100


def _page(page: int, limit: int) -> Tuple[int, int]:
    return max(1, page), max(1, min(limit, MAX_PAGE_SIZE))


def list_raw_data(
    db: Session,
    user: User,
    *,
    sync_job_id: Optional[str] = None,
    endpoint: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[RawRecord], int]:
    """Newest first; ``endpoint`` matches any substring of the stored URL."""
    if not user.is_admin:
        raise AccessDenied("Raw API data is restricted to administrators")
    page, limit = _page(page, limit)

    query = db.query(RawApiData)
    if sync_job_id:
        query = query.filter(RawApiData.sync_job_id == sync_job_id)
    if endpoint:
        query = query.filter(RawApiData.endpoint.contains(endpoint, autoescape=True))

    total = query.count()
    rows = (
        query.options(joinedload(RawApiData.sync_job).joinedload(SyncJob.connector))
        .order_by(RawApiData.created_at.desc(), RawApiData.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [RawRecord.from_row(r) for r in rows], total


def list_normalized_data(
    db: Session,
    user: User,
    *,
    sync_job_id: Optional[str] = None,
    connector_id: Optional[str] = None,
    entity_key: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[NormalizedRecord], int]:
    """Newest first. Non-admins only see records from jobs they triggered."""
    page, limit = _page(page, limit)

    query = db.query(NormalizedData)
    if not user.is_admin:
        query = query.join(SyncJob, NormalizedData.sync_job_id == SyncJob.id).filter(SyncJob.user_id == user.id)
    if sync_job_id:
        query = query.filter(NormalizedData.sync_job_id == sync_job_id)
    if connector_id:
        query = query.filter(NormalizedData.connector_id == connector_id)
    if entity_key:
        query = query.filter(NormalizedData.entity_key.contains(entity_key, autoescape=True))

    total = query.count()
    rows = (
        query.options(joinedload(NormalizedData.sync_job), joinedload(NormalizedData.connector))
        .order_by(NormalizedData.created_at.desc(), NormalizedData.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [NormalizedRecord.from_row(r) for r in rows], total
