from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LogEntry(BaseModel):
    timestamp: str
    level: str
    message: str


class SyncJobSummary(BaseModel):
    """What ``trigger_sync`` hands back: the job as created, still PENDING."""

    id: str
    status: str
    connector_id: str = Field(..., alias="connectorId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_job(cls, job) -> "SyncJobSummary":
        return cls(
            id=job.id,
            status=job.status,
            connector_id=job.connector_id,
            created_at=job.created_at,
        )


class SyncJobDetail(BaseModel):
    """Poll model for a job: status, log and record counts."""

    id: str
    connector_id: str = Field(..., alias="connectorId")
    user_id: str = Field(..., alias="userId")
    status: str
    logs: List[LogEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    raw_record_count: int = Field(default=0, alias="rawRecordCount")
    normalized_record_count: int = Field(default=0, alias="normalizedRecordCount")

    model_config = ConfigDict(populate_by_name=True)


class TriggerSyncResponse(BaseModel):
    message: str
    sync_job: SyncJobSummary = Field(..., alias="syncJob")

    model_config = ConfigDict(populate_by_name=True)


class RetryJobResponse(BaseModel):
    message: str
    original_job_id: str = Field(..., alias="originalJobId")
    new_job: SyncJobSummary = Field(..., alias="newJob")

    model_config = ConfigDict(populate_by_name=True)
