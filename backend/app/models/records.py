from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectorRef(BaseModel):
    id: str
    name: str


class SyncJobRef(BaseModel):
    id: str
    status: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    connector: Optional[ConnectorRef] = None

    model_config = ConfigDict(populate_by_name=True)


class RawRecord(BaseModel):
    """One stored response body, with the job (and its connector) that fetched it."""

    id: str
    sync_job_id: str = Field(..., alias="syncJobId")
    endpoint: str
    response: Any = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    sync_job: SyncJobRef = Field(..., alias="syncJob")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_row(cls, row) -> "RawRecord":
        job = row.sync_job
        return cls(
            id=row.id,
            sync_job_id=row.sync_job_id,
            endpoint=row.endpoint,
            response=row.response,
            created_at=row.created_at,
            sync_job=SyncJobRef(
                id=job.id,
                status=job.status,
                created_at=job.created_at,
                connector=ConnectorRef(id=job.connector.id, name=job.connector.name),
            ),
        )


class NormalizedRecord(BaseModel):
    id: str
    sync_job_id: str = Field(..., alias="syncJobId")
    connector_id: str = Field(..., alias="connectorId")
    entity_key: str = Field(..., alias="entityKey")
    data: Dict[str, Any] = Field(default_factory=dict)
    record_metadata: Optional[Dict[str, Any]] = Field(default=None, alias="metadata")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    sync_job: SyncJobRef = Field(..., alias="syncJob")
    connector: ConnectorRef

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_row(cls, row) -> "NormalizedRecord":
        job = row.sync_job
        return cls(
            id=row.id,
            sync_job_id=row.sync_job_id,
            connector_id=row.connector_id,
            entity_key=row.entity_key,
            data=row.data or {},
            record_metadata=row.record_metadata,
            created_at=row.created_at,
            sync_job=SyncJobRef(id=job.id, status=job.status, created_at=job.created_at),
            connector=ConnectorRef(id=row.connector.id, name=row.connector.name),
        )
