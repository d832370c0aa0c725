from typing import Any, Dict, List, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.sync_job import SyncJobSummary
from app.models_sqlalchemy import Base
from app.models_sqlalchemy.models import Connector, SyncJob, SyncJobStatus, User, UserRole
from app.services.sync.errors import JobNotRetryable
from app.services.sync.job_state import create_job, get_job


@pytest.fixture
def db_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _add_user(db, email: str, role: str) -> User:
    user = User(email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db) -> User:
    return _add_user(db, "admin@example.com", UserRole.admin.value)


@pytest.fixture
def regular_user(db) -> User:
    return _add_user(db, "alice@example.com", UserRole.user.value)


@pytest.fixture
def other_user(db) -> User:
    return _add_user(db, "bob@example.com", UserRole.user.value)


@pytest.fixture
def make_connector(db):
    """Factory for connector rows; keyword overrides map onto ORM columns."""

    def _make(owner: User, **overrides: Any) -> Connector:
        values: Dict[str, Any] = {
            "name": "Example API",
            "base_url": "https://api.example.com",
            "auth_type": "NONE",
            "auth_config": {},
            "rate_limit_config": {},
            "endpoint_config": [{"path": "/items", "method": "GET"}],
            "field_mapping_config": {},
            "is_shared": False,
        }
        values.update(overrides)
        connector = Connector(owner_id=owner.id, **values)
        db.add(connector)
        db.commit()
        db.refresh(connector)
        return connector

    return _make


@pytest.fixture
def make_job(db):
    def _make(connector: Connector, user: User, status: str = SyncJobStatus.PENDING.value) -> SyncJob:
        job = create_job(db, connector_id=connector.id, user_id=user.id)
        if status != SyncJobStatus.PENDING.value:
            job.status = status
            db.commit()
            db.refresh(job)
        return job

    return _make


class FakeEngine:
    """Stands in for SyncEngine where only the trigger contract matters.

    Jobs are persisted as PENDING but never run.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self.triggered: List[Tuple[str, str]] = []
        self.fail_with: Exception = None

    async def trigger_sync(self, connector_id: str, user_id: str) -> SyncJobSummary:
        if self.fail_with is not None:
            raise self.fail_with
        self.triggered.append((connector_id, user_id))
        db = self._session_factory()
        try:
            return SyncJobSummary.from_job(create_job(db, connector_id=connector_id, user_id=user_id))
        finally:
            db.close()

    async def retry_job(self, job_id: str, user_id: str) -> SyncJobSummary:
        db = self._session_factory()
        try:
            job = get_job(db, job_id)
            if job.status != SyncJobStatus.FAILED.value:
                raise JobNotRetryable(job_id, job.status)
            connector_id = job.connector_id
        finally:
            db.close()
        return await self.trigger_sync(connector_id, user_id)


@pytest.fixture
def fake_engine(session_factory) -> FakeEngine:
    return FakeEngine(session_factory)
