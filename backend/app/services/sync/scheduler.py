"""Recurring sync triggers for shared connectors.

One asyncio task per connector sleeps for the connector's interval and then
calls ``SyncEngine.trigger_sync`` under an admin identity. Timers live on the
scheduler instance; they must be created and cancelled from the event loop
thread.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from app.models.connector import RateLimitConfig
from app.models.sync_job import SyncJobSummary
from app.models_sqlalchemy import SessionLocal
from app.models_sqlalchemy.models import Connector, User, UserRole
from app.utils.logger import get_logger
from app.utils.schedule import describe_interval, parse_schedule_to_interval

from .engine import SyncEngine

logger = get_logger("scheduler")


class SyncScheduler:
    def __init__(
        self,
        engine: SyncEngine,
        session_factory: sessionmaker = SessionLocal,
        *,
        owner_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._engine = engine
        self._session_factory = session_factory
        self._owner_id = owner_id
        self._sleep = sleep
        self._timers: Dict[str, asyncio.Task] = {}
        self._intervals: Dict[str, float] = {}
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def interval_for(self, connector_id: str) -> Optional[float]:
        return self._intervals.get(connector_id)

    async def start(self) -> int:
        """Schedule every shared connector that has a usable syncSchedule."""
        if self._active:
            return len(self._timers)

        db = self._session_factory()
        try:
            rows = db.query(Connector.id, Connector.rate_limit_config).filter(Connector.is_shared.is_(True)).all()
        finally:
            db.close()

        for connector_id, rate_limit_config in rows:
            schedule = RateLimitConfig.from_stored(rate_limit_config).sync_schedule
            if schedule:
                self.schedule_connector(connector_id, schedule)

        self._active = True
        logger.info("Scheduler started with %s connectors", len(self._timers))
        return len(self._timers)

    def stop(self) -> None:
        for connector_id in list(self._timers):
            self.unschedule_connector(connector_id)
        self._active = False
        logger.info("Scheduler stopped")

    def schedule_connector(self, connector_id: str, schedule: Optional[str]) -> bool:
        """(Re)arm the timer for one connector; returns False if not scheduled."""
        interval = parse_schedule_to_interval(schedule)
        self.unschedule_connector(connector_id)
        if interval is None:
            logger.warning("Connector %s has unusable syncSchedule %r, not scheduling", connector_id, schedule)
            return False

        self._timers[connector_id] = asyncio.create_task(
            self._timer_loop(connector_id, interval),
            name=f"sync-schedule-{connector_id}",
        )
        self._intervals[connector_id] = interval
        logger.info("Scheduled connector %s every %s", connector_id, describe_interval(interval))
        return True

    def unschedule_connector(self, connector_id: str) -> bool:
        self._intervals.pop(connector_id, None)
        task = self._timers.pop(connector_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Unscheduled connector %s", connector_id)
        return True

    def refresh_schedule(self, connector_id: str) -> bool:
        """Re-read a connector after an edit and arm or clear its timer."""
        db = self._session_factory()
        try:
            connector = db.get(Connector, connector_id)
            is_shared = bool(connector.is_shared) if connector is not None else False
            schedule = RateLimitConfig.from_stored(connector.rate_limit_config).sync_schedule if connector else None
        finally:
            db.close()

        if is_shared and schedule:
            return self.schedule_connector(connector_id, schedule)
        self.unschedule_connector(connector_id)
        return False

    def status(self) -> Dict[str, Any]:
        connector_ids: List[str] = list(self._timers)
        return {
            "active": self._active,
            "scheduledConnectors": len(connector_ids),
            "connectorIds": connector_ids,
        }

    def _resolve_owner(self) -> Optional[str]:
        if self._owner_id:
            return self._owner_id
        db = self._session_factory()
        try:
            admin = (
                db.query(User)
                .filter(User.role == UserRole.admin.value)
                .order_by(User.created_at.asc(), User.id.asc())
                .first()
            )
            return admin.id if admin is not None else None
        finally:
            db.close()

    async def run_scheduled_sync(self, connector_id: str) -> Optional[SyncJobSummary]:
        """One tick: trigger a sync for ``connector_id`` as the scheduler owner."""
        owner_id = self._resolve_owner()
        if owner_id is None:
            logger.warning("No admin user found, skipping scheduled sync for connector %s", connector_id)
            return None

        job = await self._engine.trigger_sync(connector_id, owner_id)
        logger.info("Scheduled sync for connector %s started job %s", connector_id, job.id)
        return job

    async def _timer_loop(self, connector_id: str, interval: float) -> None:
        while True:
            await self._sleep(interval)
            try:
                await self.run_scheduled_sync(connector_id)
            except Exception as exc:
                logger.error("Scheduled sync for connector %s failed: %s", connector_id, exc, exc_info=True)
