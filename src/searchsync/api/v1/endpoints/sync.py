"""Sync endpoints — Push document changes into the index and inspect the sync ledger.

In real-time mode a write endpoint returns the outcome of the backend call.
In queued mode it returns an optimistic ``success: true`` as soon as the
event is accepted; the eventual outcome shows up under ``/sync/status``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from searchsync.api.deps import get_sync_engine
from searchsync.core.sync import IndexSyncEngine
from searchsync.models.document import DocumentType, SearchableDocument
from searchsync.models.sync import BatchSyncResult, IndexSyncRecord, SyncResult, SyncStats

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post(
    "/documents",
    response_model=SyncResult,
    summary="Document Created",
    description="Report a newly created document so it gets indexed.",
)
async def create_document(
    document: SearchableDocument,
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> SyncResult:
    return await engine.on_create(document)


@router.put(
    "/documents/{document_id}",
    response_model=SyncResult,
    summary="Document Updated",
    description="Report the new full version of a document. The indexed copy is replaced.",
    responses={400: {"description": "Path id and body id differ"}},
)
async def update_document(
    document_id: str,
    document: SearchableDocument,
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> SyncResult:
    if document.id != document_id:
        raise HTTPException(status_code=400, detail=f"Body id '{document.id}' does not match path id '{document_id}'")
    return await engine.on_update(document)


@router.delete(
    "/documents/{document_id}",
    response_model=SyncResult,
    summary="Document Deleted",
    description="Report a deleted document so it is removed from the index.",
)
async def delete_document(
    document_id: str,
    document_type: DocumentType = Query(alias="type", description="Type of the deleted document"),
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> SyncResult:
    return await engine.on_delete(document_id, document_type)


@router.post(
    "/bulk",
    response_model=BatchSyncResult,
    summary="Bulk Resync",
    description="Index many documents in batches. One failing document does not abort the batch.",
)
async def bulk_sync(
    documents: list[SearchableDocument],
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> BatchSyncResult:
    return await engine.bulk_sync(documents)


@router.post(
    "/retry",
    response_model=BatchSyncResult,
    summary="Retry Failed",
    description="Re-attempt failed ledger entries. Exhausted entries are skipped unless include_exhausted is set.",
)
async def retry_failed(
    include_exhausted: bool = Query(default=False, description="Also retry entries with no retry budget left"),
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> BatchSyncResult:
    return await engine.retry_failed(include_exhausted=include_exhausted)


@router.get(
    "/status/{document_id}",
    response_model=IndexSyncRecord,
    summary="Document Sync Status",
    responses={404: {"description": "No event was ever seen for this document"}},
)
async def sync_status(
    document_id: str,
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> IndexSyncRecord:
    record = engine.get_sync_status(document_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No sync record for document '{document_id}'")
    return record


@router.get("/stats", response_model=SyncStats, summary="Sync Statistics")
async def sync_stats(engine: IndexSyncEngine = Depends(get_sync_engine)) -> SyncStats:
    return engine.get_stats()
