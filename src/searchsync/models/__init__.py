"""Shared document, query, result and sync models."""

from searchsync.models.document import DocumentField, DocumentType, SearchableDocument
from searchsync.models.query import (
    DateField,
    DateRange,
    FacetField,
    SearchFilters,
    SearchQuery,
    SortClause,
    SortField,
    SortOrder,
)
from searchsync.models.result import (
    AggregationBucket,
    BulkResult,
    IndexStats,
    SearchHit,
    SearchResult,
    SearchSuggestion,
)
from searchsync.models.sync import (
    BatchSyncResult,
    IndexSyncRecord,
    SyncEvent,
    SyncEventType,
    SyncResult,
    SyncStats,
    SyncStatus,
)

__all__ = [
    "AggregationBucket",
    "BatchSyncResult",
    "BulkResult",
    "DateField",
    "DateRange",
    "DocumentField",
    "DocumentType",
    "FacetField",
    "IndexStats",
    "IndexSyncRecord",
    "SearchFilters",
    "SearchHit",
    "SearchQuery",
    "SearchResult",
    "SearchSuggestion",
    "SearchableDocument",
    "SortClause",
    "SortField",
    "SortOrder",
    "SyncEvent",
    "SyncEventType",
    "SyncResult",
    "SyncStats",
    "SyncStatus",
]
