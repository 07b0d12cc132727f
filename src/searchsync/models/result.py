"""Search, bulk and statistics result models."""

from __future__ import annotations

import math

from pydantic import BaseModel, Field

from searchsync.models.document import SearchableDocument


class SearchHit(BaseModel):
    """A single matching document."""

    document: SearchableDocument = Field(description="The indexed document")
    score: float = Field(default=0.0, description="Relevance score from the backend")
    highlights: dict[str, list[str]] | None = Field(
        default=None, description="Highlighted fragments per field"
    )


class AggregationBucket(BaseModel):
    key: str = Field(description="Term value")
    count: int = Field(description="Number of matching documents")


class SearchSuggestion(BaseModel):
    text: str = Field(description="Suggested text")
    score: float = Field(default=0.0, description="Suggestion weight")


class SearchResult(BaseModel):
    """Canonical search response returned by every adapter."""

    hits: list[SearchHit] = Field(default_factory=list)
    total: int = Field(default=0, description="Total matching documents")
    page: int = Field(default=1)
    page_size: int = Field(default=10)
    total_pages: int = Field(default=0)
    took_ms: int = Field(default=0, description="Elapsed time in milliseconds")
    suggestions: list[str] | None = Field(default=None)
    aggregations: dict[str, list[AggregationBucket]] | None = Field(default=None)

    @staticmethod
    def page_count(total: int, page_size: int) -> int:
        return math.ceil(total / page_size) if page_size else 0


class BulkResult(BaseModel):
    """Outcome of a bulk write; backends apply bulk operations partially."""

    success: int = Field(default=0)
    failed: int = Field(default=0)
    errors: dict[str, str] = Field(default_factory=dict, description="Failure reason per document id")


class IndexStats(BaseModel):
    total: int = Field(default=0, description="Documents in the index")
    by_type: dict[str, int] = Field(default_factory=dict, description="Document count per type")
