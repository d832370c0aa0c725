import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import connectors, data, health, jobs
from app.utils.logger import logger

app = FastAPI(title="API Sync Service", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


app.include_router(connectors.router)
app.include_router(jobs.router)
app.include_router(data.router)
app.include_router(health.router)


@app.on_event("startup")
async def startup_event():
    logger.info("API Sync Service starting up...")

    from app.init_db import init_db
    from app.services.sync import SyncEngine, SyncScheduler

    init_db()

    engine = SyncEngine()
    scheduler = SyncScheduler(engine, owner_id=settings.SCHEDULER_OWNER_ID)
    app.state.sync_engine = engine
    app.state.sync_scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        try:
            await scheduler.start()
        except Exception as e:
            logger.error(f"⚠️  Failed to start sync scheduler: {e}", exc_info=True)
    else:
        logger.info("Sync scheduler disabled (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    engine = getattr(app.state, "sync_engine", None)
    if engine is not None and engine.active_job_count:
        logger.info("Waiting for %s running sync jobs to finish", engine.active_job_count)
        await engine.drain()


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "message": "API Sync Service",
        "version": "1.0.0",
        "docs": "/docs"
    }
