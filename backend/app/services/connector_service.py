from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.connector import ConnectorCreate, ConnectorUpdate, FromTemplateRequest, mask_secrets
from app.models_sqlalchemy.models import Connector, User
from app.services.connector_templates import build_connector_from_template, get_template
from app.services.sync.errors import AccessDenied, ConnectorConfigError, ConnectorNotFound, TemplateNotFound
from app.services.sync.scheduler import SyncScheduler
from app.utils.logger import logger

MAX_PAGE_SIZE = 100


def can_view(user: User, connector: Connector) -> bool:
    return user.is_admin or connector.owner_id == user.id or bool(connector.is_shared)


def can_edit(user: User, connector: Connector) -> bool:
    return user.is_admin or connector.owner_id == user.id


def can_sync(user: User, connector: Connector) -> bool:
    return can_view(user, connector)


def validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "__root__")
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)


def _keep_masked_secrets(incoming: Dict[str, Any], existing: Dict[str, Any]) -> Dict[str, Any]:
    """Secrets echoed back in masked form keep their stored value."""
    merged = dict(incoming)
    masked = mask_secrets(existing)
    for key, value in incoming.items():
        if key == "headers":
            continue
        if key in existing and masked.get(key) == value and value != existing[key]:
            merged[key] = existing[key]

    headers = incoming.get("headers")
    stored_headers = existing.get("headers")
    if isinstance(headers, dict) and isinstance(stored_headers, dict):
        masked_headers = masked.get("headers") or {}
        merged["headers"] = {
            name: stored_headers[name]
            if name in stored_headers and masked_headers.get(name) == value and value != stored_headers[name]
            else value
            for name, value in headers.items()
        }
    return merged


class ConnectorService:
    """Connector CRUD with ownership rules.

    Every write re-arms (or clears) the connector's schedule when a running
    scheduler is attached.
    """

    def __init__(self, db: Session, scheduler: Optional[SyncScheduler] = None):
        self.db = db
        self.scheduler = scheduler

    def _refresh_schedule(self, connector_id: str) -> None:
        if self.scheduler is not None and self.scheduler.active:
            self.scheduler.refresh_schedule(connector_id)

    def list_connectors(self, user: User, page: int = 1, limit: int = 10) -> Tuple[List[Connector], int]:
        """Admins see everything; other users see their own plus shared connectors."""
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        query = self.db.query(Connector)
        if not user.is_admin:
            query = query.filter(or_(Connector.owner_id == user.id, Connector.is_shared.is_(True)))

        total = query.count()
        connectors = (
            query.order_by(Connector.created_at.desc(), Connector.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return connectors, total

    def get_connector(self, connector_id: str, user: Optional[User] = None) -> Connector:
        connector = self.db.get(Connector, connector_id)
        if connector is None:
            raise ConnectorNotFound(connector_id)
        if user is not None and not can_view(user, connector):
            raise AccessDenied("Access denied")
        return connector

    def get_connector_for_sync(self, connector_id: str, user: User) -> Connector:
        connector = self.get_connector(connector_id)
        if not can_sync(user, connector):
            raise AccessDenied("You do not have permission to trigger sync for this connector")
        return connector

    def create_connector(self, user: User, payload: ConnectorCreate) -> Connector:
        columns = payload.to_columns()
        # Only admins can publish shared connectors.
        columns["is_shared"] = bool(payload.is_shared) if user.is_admin else False

        connector = Connector(owner_id=user.id, **columns)
        self.db.add(connector)
        self.db.commit()
        self.db.refresh(connector)
        logger.info(f"Created connector {connector.id} ({connector.name}) for user {user.id}")

        self._refresh_schedule(connector.id)
        return connector

    def update_connector(self, connector_id: str, user: User, payload: ConnectorUpdate) -> Connector:
        connector = self.get_connector(connector_id)
        if not can_edit(user, connector):
            raise AccessDenied("You do not have permission to update this connector")

        updates = payload.model_dump(exclude_unset=True, exclude_none=True)
        current = {
            "name": connector.name,
            "base_url": connector.base_url,
            "auth_type": connector.auth_type,
            "auth_config": connector.auth_config or {},
            "rate_limit_config": connector.rate_limit_config or {},
            "endpoint_config": connector.endpoint_config or [],
            "field_mapping_config": connector.field_mapping_config or {},
            "is_shared": bool(connector.is_shared),
        }
        if "auth_config" in updates:
            updates["auth_config"] = _keep_masked_secrets(updates["auth_config"], current["auth_config"])
        if not user.is_admin:
            updates.pop("is_shared", None)

        try:
            validated = ConnectorCreate.model_validate({**current, **updates})
        except ValidationError as exc:
            raise ConnectorConfigError(validation_message(exc)) from exc

        for column, value in validated.to_columns().items():
            setattr(connector, column, value)
        self.db.commit()
        self.db.refresh(connector)
        logger.info(f"Updated connector {connector.id} by user {user.id}")

        self._refresh_schedule(connector.id)
        return connector

    def delete_connector(self, connector_id: str, user: User) -> None:
        connector = self.get_connector(connector_id)
        if not can_edit(user, connector):
            raise AccessDenied("You do not have permission to delete this connector")

        if self.scheduler is not None:
            self.scheduler.unschedule_connector(connector_id)
        self.db.delete(connector)
        self.db.commit()
        logger.info(f"Deleted connector {connector_id} by user {user.id}")

    def create_from_template(self, user: User, request: FromTemplateRequest) -> Tuple[Connector, Dict[str, Any]]:
        template = get_template(request.template_id)
        if template is None:
            raise TemplateNotFound(request.template_id)

        try:
            payload = build_connector_from_template(
                template,
                name=request.name,
                auth_config=request.auth_config,
                is_shared=request.is_shared,
            )
        except ValidationError as exc:
            raise ConnectorConfigError(validation_message(exc)) from exc

        connector = self.create_connector(user, payload)
        return connector, {"id": template.id, "name": template.name, "provider": template.provider}
