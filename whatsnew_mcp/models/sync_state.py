"""Models for sync checkpoint, run results and store statistics"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Lifecycle state of the synchronizer"""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncCheckpoint(BaseModel):
    """Singleton record of the last run outcome and current status"""

    status: SyncStatus = Field(default=SyncStatus.IDLE)
    last_sync: datetime | None = Field(
        default=None, description="When the last successful run finished (None = never)"
    )
    last_duration_ms: int | None = Field(default=None, ge=0)
    record_count: int = Field(default=0, ge=0, description="Documents written by the last run")
    last_error: str | None = None
    updated_at: datetime | None = None


class SyncResult(BaseModel):
    """Result of a sync run"""

    success: bool = Field(description="Whether the run completed")
    document_count: int = Field(default=0, ge=0, description="Documents upserted this run")
    commit_count: int = Field(default=0, ge=0, description="Commits upserted this run")
    duration_ms: int = Field(default=0, ge=0)
    skipped: bool = Field(
        default=False, description="True when the run did no remote work (interval or no change)"
    )
    failed_paths: list[str] = Field(
        default_factory=list, description="Documents or sources skipped after a failure"
    )
    error: str | None = Field(default=None, description="Error message or failure summary")


class StoreStats(BaseModel):
    """Row counts and storage size, for observability"""

    document_count: int = 0
    commit_count: int = 0
    repository_count: int = 0
    product_count: int = 0
    size_bytes: int = 0
    fts_enabled: bool = False
