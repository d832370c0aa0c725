from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.models.sync_job import RetryJobResponse
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User
from app.routers.deps import get_sync_engine, http_error, pagination
from app.services.auth import get_current_user
from app.services.sync.engine import SyncEngine
from app.services.sync.errors import SyncError
from app.services.sync.jobs import get_job_detail, list_jobs, retry_failed_job

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("")
async def get_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    jobs, total = list_jobs(db, current_user, status=status, connector_id=connector_id, page=page, limit=limit)
    return {
        "jobs": [j.model_dump(by_alias=True, mode="json") for j in jobs],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        job = get_job_detail(db, job_id, current_user)
    except SyncError as exc:
        raise http_error(exc)
    return {"job": job.model_dump(by_alias=True, mode="json")}


@router.post("/{job_id}/retry")
async def retry_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        new_job = await retry_failed_job(db, engine, job_id, current_user)
    except SyncError as exc:
        raise http_error(exc)
    return RetryJobResponse(
        message="Retry job started successfully",
        original_job_id=job_id,
        new_job=new_job,
    ).model_dump(by_alias=True, mode="json")
