from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User
from app.routers.deps import http_error, pagination
from app.services.auth import get_current_user
from app.services.sync.data import list_normalized_data, list_raw_data
from app.services.sync.errors import SyncError

router = APIRouter(prefix="/api/data", tags=["data"])


@router.get("/raw")
async def get_raw_data(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sync_job_id: Optional[str] = Query(None, alias="syncJobId"),
    endpoint: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        records, total = list_raw_data(
            db, current_user, sync_job_id=sync_job_id, endpoint=endpoint, page=page, limit=limit
        )
    except SyncError as exc:
        raise http_error(exc)
    return {
        "data": [r.model_dump(by_alias=True, mode="json") for r in records],
        "pagination": pagination(page, limit, total),
    }


@router.get("/normalized")
async def get_normalized_data(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sync_job_id: Optional[str] = Query(None, alias="syncJobId"),
    connector_id: Optional[str] = Query(None, alias="connectorId"),
    entity_key: Optional[str] = Query(None, alias="entityKey"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    records, total = list_normalized_data(
        db,
        current_user,
        sync_job_id=sync_job_id,
        connector_id=connector_id,
        entity_key=entity_key,
        page=page,
        limit=limit,
    )
    return {
        "data": [r.model_dump(by_alias=True, mode="json") for r in records],
        "pagination": pagination(page, limit, total),
    }
