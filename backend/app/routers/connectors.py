from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.models.connector import ConnectorCreate, ConnectorResponse, ConnectorUpdate, FromTemplateRequest
from app.models.sync_job import TriggerSyncResponse
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User
from app.routers.deps import get_scheduler, get_sync_engine, http_error, pagination
from app.services.auth import admin_required, get_current_user
from app.services.connector_service import ConnectorService
from app.services.connector_templates import get_categories, get_template, list_templates
from app.services.sync.engine import SyncEngine
from app.services.sync.errors import SyncError
from app.services.sync.scheduler import SyncScheduler
from app.utils.logger import logger

router = APIRouter(prefix="/api/connectors", tags=["connectors"])


def _dump(connector) -> dict:
    return ConnectorResponse.from_orm_connector(connector).model_dump(by_alias=True, mode="json")


# Template routes are declared before "/{connector_id}" so they are matched first.

@router.get("/templates")
async def list_connector_templates(current_user: User = Depends(get_current_user)):
    return {"templates": list_templates(), "categories": get_categories()}


@router.get("/templates/{template_id}")
async def get_connector_template(template_id: str, current_user: User = Depends(get_current_user)):
    template = get_template(template_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return {"template": template.to_dict()}


@router.post("/from-template", status_code=status.HTTP_201_CREATED)
async def create_connector_from_template(
    request: FromTemplateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    try:
        connector, template = ConnectorService(db, scheduler).create_from_template(current_user, request)
    except SyncError as exc:
        raise http_error(exc)
    return {
        "message": "Connector created from template successfully",
        "connector": _dump(connector),
        "template": template,
    }


@router.get("")
async def list_connectors(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    connectors, total = ConnectorService(db).list_connectors(current_user, page=page, limit=limit)
    return {
        "connectors": [_dump(c) for c in connectors],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{connector_id}")
async def get_connector(
    connector_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        connector = ConnectorService(db).get_connector(connector_id, current_user)
    except SyncError as exc:
        raise http_error(exc)
    return {"connector": _dump(connector)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_connector(
    payload: ConnectorCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    connector = ConnectorService(db, scheduler).create_connector(current_user, payload)
    return {"message": "Connector created successfully", "connector": _dump(connector)}


@router.put("/{connector_id}")
async def update_connector(
    connector_id: str,
    payload: ConnectorUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    try:
        connector = ConnectorService(db, scheduler).update_connector(connector_id, current_user, payload)
    except SyncError as exc:
        raise http_error(exc)
    return {"message": "Connector updated successfully", "connector": _dump(connector)}


@router.delete("/{connector_id}")
async def delete_connector(
    connector_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    try:
        ConnectorService(db, scheduler).delete_connector(connector_id, current_user)
    except SyncError as exc:
        raise http_error(exc)
    return {"message": "Connector deleted successfully"}


@router.post("/{connector_id}/sync", status_code=status.HTTP_202_ACCEPTED)
async def trigger_connector_sync(
    connector_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
    engine: SyncEngine = Depends(get_sync_engine),
):
    try:
        connector = ConnectorService(db).get_connector_for_sync(connector_id, current_user)
    except SyncError as exc:
        raise http_error(exc)

    job = await engine.trigger_sync(connector.id, current_user.id)
    logger.info(f"User {current_user.id} triggered sync job {job.id} for connector {connector.id}")
    return TriggerSyncResponse(message="Sync job triggered", sync_job=job).model_dump(by_alias=True, mode="json")
