"""Health check endpoint — Service and backend status."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from searchsync import __version__
from searchsync.api.deps import get_search_service, get_sync_engine
from searchsync.core.service import SearchService
from searchsync.core.sync import IndexSyncEngine

router = APIRouter()


class HealthResponse(BaseModel):
    """System health check response."""

    status: str = Field(description="'healthy' when the backend answers, otherwise 'degraded'")
    version: str = Field(description="SearchSync server version")
    service: str = Field(description="Service name ('searchsync')")
    backend: str = Field(description="Name of the active search backend")
    backend_available: bool = Field(description="Whether the backend answered a health check")
    sync_mode: str = Field(description="'realtime' or 'queued'")
    queue_size: int = Field(description="Events waiting in the sync queue")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="System Health Check",
    description="Returns server version, the active backend and whether it is reachable.",
)
async def health_check(
    service: SearchService = Depends(get_search_service),
    engine: IndexSyncEngine = Depends(get_sync_engine),
) -> HealthResponse:
    available = await service.ping()
    return HealthResponse(
        status="healthy" if available else "degraded",
        version=__version__,
        service="searchsync",
        backend=service.adapter.name,
        backend_available=available,
        sync_mode="realtime" if engine.realtime else "queued",
        queue_size=engine.queue_size,
    )
