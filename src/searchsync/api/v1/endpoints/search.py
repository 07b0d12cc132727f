"""Search endpoints — Full-text search, suggestions, counts and index statistics.

All endpoints query the single index bound to the search service.  Backend
failures are reported as ``503`` when the backend is unreachable and ``502``
when it rejected the request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from searchsync.adapters.base.exceptions import AdapterError
from searchsync.api.deps import backend_error, get_search_service
from searchsync.core.service import SearchService
from searchsync.models.query import SearchFilters, SearchQuery
from searchsync.models.result import IndexStats, SearchResult, SearchSuggestion

logger = logging.getLogger(__name__)

router = APIRouter()


class CountResponse(BaseModel):
    count: int = Field(description="Number of documents matching the filters")


@router.post(
    "/search",
    response_model=SearchResult,
    summary="Full-Text Search",
    description=(
        "Search the index with a free-text query, structured filters, sorting, "
        "highlighting and optional facet aggregations and suggestions."
    ),
    responses={
        422: {"description": "Validation error — invalid query body"},
        502: {"description": "The search backend rejected the query"},
        503: {"description": "The search backend is unavailable"},
    },
)
async def search(
    query: SearchQuery,
    service: SearchService = Depends(get_search_service),
) -> SearchResult:
    try:
        return await service.search(query)
    except AdapterError as e:
        logger.error("Search failed: %s", e, exc_info=True)
        raise backend_error(e) from e


@router.get(
    "/suggest",
    response_model=list[SearchSuggestion],
    summary="Title Suggestions",
    description="Prefix completion against document titles.",
)
async def suggest(
    q: str = Query(min_length=1, max_length=200, description="Prefix to complete"),
    size: int = Query(default=5, ge=1, le=50, description="Maximum number of suggestions"),
    service: SearchService = Depends(get_search_service),
) -> list[SearchSuggestion]:
    try:
        return await service.suggest(q, size)
    except AdapterError as e:
        logger.error("Suggest failed: %s", e, exc_info=True)
        raise backend_error(e) from e


@router.post(
    "/count",
    response_model=CountResponse,
    summary="Count Documents",
    description="Count documents matching the filters without fetching them. An empty body counts everything.",
)
async def count(
    filters: SearchFilters | None = None,
    service: SearchService = Depends(get_search_service),
) -> CountResponse:
    try:
        return CountResponse(count=await service.count(filters))
    except AdapterError as e:
        logger.error("Count failed: %s", e, exc_info=True)
        raise backend_error(e) from e


@router.get(
    "/stats",
    response_model=IndexStats,
    summary="Index Statistics",
    description="Total document count plus a breakdown per document type.",
)
async def stats(service: SearchService = Depends(get_search_service)) -> IndexStats:
    try:
        return await service.get_stats()
    except AdapterError as e:
        logger.error("Stats failed: %s", e, exc_info=True)
        raise backend_error(e) from e
