"""API dependencies — Dependency injection for FastAPI endpoints."""

from __future__ import annotations

from fastapi import HTTPException

from searchsync.adapters.base.exceptions import AdapterError, ConnectionError, TaskTimeoutError
from searchsync.core.service import SearchService
from searchsync.core.sync import IndexSyncEngine

# Global instances (set during application lifespan)
_search_service: SearchService | None = None
_sync_engine: IndexSyncEngine | None = None


def set_search_service(service: SearchService | None) -> None:
    """Set the global search service (called during app lifespan)."""
    global _search_service
    _search_service = service


def get_search_service() -> SearchService:
    """Get the global search service.

    Raises:
        RuntimeError: If the service is not initialized.
    """
    if _search_service is None:
        raise RuntimeError("Search service not initialized. Is the server running?")
    return _search_service


def set_sync_engine(engine: IndexSyncEngine | None) -> None:
    """Set the global sync engine (called during app lifespan)."""
    global _sync_engine
    _sync_engine = engine


def get_sync_engine() -> IndexSyncEngine:
    """Get the global index sync engine.

    Raises:
        RuntimeError: If the engine is not initialized.
    """
    if _sync_engine is None:
        raise RuntimeError("Sync engine not initialized. Is the server running?")
    return _sync_engine


def backend_error(exc: AdapterError) -> HTTPException:
    """Map an adapter failure to 503 (backend unavailable) or 502 (backend rejected the call)."""
    status_code = 503 if isinstance(exc, ConnectionError | TaskTimeoutError) else 502
    return HTTPException(status_code=status_code, detail=f"Search backend error: {exc}")
