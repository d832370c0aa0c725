from sqlalchemy import Column, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from app.models.connector import AuthType

from . import Base, JSONType


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    admin = "admin"
    user = "user"


class SyncJobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(String(16), nullable=False, default=UserRole.user.value, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    connectors = relationship("Connector", back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value


class Connector(Base):
    """Declarative description of one external API source.

    The four *_config columns hold camelCase JSON exactly as accepted by
    ``app.models.connector`` (validated on save, read leniently on sync).
    """

    __tablename__ = "connectors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    base_url = Column(Text, nullable=False)

    auth_type = Column(String(16), nullable=False, default=AuthType.NONE.value)
    auth_config = Column(JSONType, nullable=False, default=dict)
    # requestsPerSecond / requestsPerMinute / retryAttempts / syncSchedule
    rate_limit_config = Column(JSONType, nullable=False, default=dict)
    # [{"path": "/posts", "method": "GET"}, ...]
    endpoint_config = Column(JSONType, nullable=False, default=list)
    # {"mappings": [{"source", "target", "type", "isEntityKey"}]}
    field_mapping_config = Column(JSONType, nullable=False, default=dict)

    is_shared = Column(Boolean, nullable=False, default=False, index=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="connectors")
    sync_jobs = relationship("SyncJob", back_populates="connector", cascade="all, delete-orphan")


class SyncJob(Base):
    """One full pass over a connector's endpoints.

    ``logs`` is an ordered JSON list of {timestamp, level, message}; it is
    rewritten as a whole on every append, so a job must only be mutated by
    the worker that owns it.
    """

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    connector_id = Column(String(36), ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String(16), nullable=False, default=SyncJobStatus.PENDING.value, index=True)
    logs = Column(JSONType, nullable=False, default=list)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    connector = relationship("Connector", back_populates="sync_jobs")
    raw_records = relationship("RawApiData", back_populates="sync_job", cascade="all, delete-orphan")
    normalized_records = relationship("NormalizedData", back_populates="sync_job", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_sync_jobs_connector_created", "connector_id", "created_at"),
    )


class RawApiData(Base):
    """Unmodified response body of a single endpoint fetch."""

    __tablename__ = "raw_api_data"

    id = Column(String(36), primary_key=True, default=_uuid)
    sync_job_id = Column(String(36), ForeignKey("sync_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(Text, nullable=False)
    response = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    sync_job = relationship("SyncJob", back_populates="raw_records")


class NormalizedData(Base):
    __tablename__ = "normalized_data"

    id = Column(String(36), primary_key=True, default=_uuid)
    sync_job_id = Column(String(36), ForeignKey("sync_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    connector_id = Column(String(36), ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False, index=True)
    entity_key = Column(Text, nullable=False, index=True)
    data = Column(JSONType, nullable=False)
    # {"endpoint": <url>, "normalizedAt": <iso timestamp>}
    # "metadata" is reserved on declarative classes, hence the attribute name.
    record_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    sync_job = relationship("SyncJob", back_populates="normalized_records")
    connector = relationship("Connector", viewonly=True)

    __table_args__ = (
        Index("idx_normalized_connector_entity", "connector_id", "entity_key"),
    )
