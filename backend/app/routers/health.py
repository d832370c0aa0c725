import os
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import Connector, SyncJob
from app.routers.deps import get_scheduler
from app.services.sync.scheduler import SyncScheduler
from app.utils.logger import logger

router = APIRouter(prefix="/api/health", tags=["health"])

_STARTED_AT = time.monotonic()
APP_VERSION = "1.0.0"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uptime() -> int:
    return int(time.monotonic() - _STARTED_AT)


@router.get("")
async def health(
    db: Session = Depends(get_db),
    scheduler: Optional[SyncScheduler] = Depends(get_scheduler),
):
    body = {
        "status": "ok",
        "timestamp": _now_iso(),
        "uptime": _uptime(),
        "version": APP_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "services": {},
    }

    start = time.monotonic()
    try:
        db.execute(text("SELECT 1"))
        body["services"]["database"] = {
            "status": "healthy",
            "responseTime": int((time.monotonic() - start) * 1000),
        }
    except Exception as exc:
        logger.exception("Database health check failed")
        body["status"] = "degraded"
        body["services"]["database"] = {"status": "unhealthy", "error": str(exc)}

    body["services"]["scheduler"] = scheduler.status() if scheduler is not None else {"active": False}

    status_code = status.HTTP_200_OK if body["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(body, status_code=status_code)


@router.get("/ready")
async def ready(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Readiness check failed")
        return JSONResponse(
            {"ready": False, "timestamp": _now_iso(), "error": "Database not available"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return {"ready": True, "timestamp": _now_iso()}


@router.get("/live")
async def live():
    return {"alive": True, "timestamp": _now_iso()}


@router.get("/stats")
async def stats(db: Session = Depends(get_db)):
    connector_count = db.query(func.count(Connector.id)).scalar() or 0
    job_count = db.query(func.count(SyncJob.id)).scalar() or 0
    by_status = dict(db.query(SyncJob.status, func.count(SyncJob.id)).group_by(SyncJob.status).all())

    return {
        "timestamp": _now_iso(),
        "uptime": _uptime(),
        "pid": os.getpid(),
        "connectors": connector_count,
        "jobs": {"total": job_count, "byStatus": by_status},
    }
