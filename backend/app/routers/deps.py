import math
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status

from app.services.sync.engine import SyncEngine
from app.services.sync.errors import (
    AccessDenied,
    ConnectorConfigError,
    ConnectorNotFound,
    JobNotFound,
    JobNotRetryable,
    SyncError,
    TemplateNotFound,
)
from app.services.sync.scheduler import SyncScheduler


def get_sync_engine(request: Request) -> SyncEngine:
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine is not running",
        )
    return engine


def get_scheduler(request: Request) -> Optional[SyncScheduler]:
    return getattr(request.app.state, "sync_scheduler", None)


def http_error(exc: SyncError) -> HTTPException:
    """Map a service-layer error onto the HTTP status the API reports."""
    if isinstance(exc, (ConnectorNotFound, JobNotFound, TemplateNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AccessDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, JobNotRetryable):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(exc), "currentStatus": exc.status},
        )
    if isinstance(exc, ConnectorConfigError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
