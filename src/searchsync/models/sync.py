"""Index synchronization models — events, ledger records and results."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from searchsync.models.document import DocumentType, SearchableDocument


def utcnow() -> datetime:
    return datetime.now(UTC)


class SyncEventType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class SyncEvent(BaseModel):
    """A pending index mutation for one document."""

    document_id: str
    event_type: SyncEventType
    document_type: DocumentType
    document: SearchableDocument | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    retry_count: int = 0
    sequence: int = Field(default=0, description="Admission order; higher is newer")


class IndexSyncRecord(BaseModel):
    """Ledger entry — the latest known sync state of one document."""

    document_id: str
    document_type: DocumentType
    event_type: SyncEventType
    status: SyncStatus
    last_synced_at: datetime | None = Field(default=None, description="Last successful sync")
    error: str | None = None
    retry_count: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class SyncResult(BaseModel):
    success: bool
    document_id: str
    document_type: DocumentType
    event_type: SyncEventType
    error: str | None = None
    synced_at: datetime | None = None


class BatchSyncResult(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    results: list[SyncResult] = Field(default_factory=list)


class SyncStats(BaseModel):
    pending_count: int = 0
    synced_count: int = 0
    failed_count: int = 0
    deleted_count: int = 0
    last_sync_at: datetime | None = None
    queue_size: int = 0
    scheduled_retries: int = 0
