"""Query and filter models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from searchsync.models.document import DocumentField, DocumentType


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortField(str, Enum):
    """Fields a query may sort on."""

    SCORE = "_score"
    CREATED_AT = DocumentField.CREATED_AT
    UPDATED_AT = DocumentField.UPDATED_AT
    TITLE = DocumentField.TITLE


class FacetField(str, Enum):
    """Keyword fields that support term aggregations."""

    TYPE = DocumentField.TYPE
    STATUS = DocumentField.STATUS
    CATEGORY = DocumentField.CATEGORY
    TAGS = DocumentField.TAGS
    AUTHOR = DocumentField.AUTHOR
    AUTHOR_ID = DocumentField.AUTHOR_ID


class DateField(str, Enum):
    CREATED_AT = DocumentField.CREATED_AT
    UPDATED_AT = DocumentField.UPDATED_AT


class SortClause(BaseModel):
    """One sort key."""

    field: SortField = Field(description="Field to sort on")
    order: SortOrder = Field(default=SortOrder.DESC, description="Sort direction")


class DateRange(BaseModel):
    """Inclusive date range on one of the document date fields."""

    field: DateField = Field(default=DateField.CREATED_AT, description="Date field to constrain")
    start: datetime | None = Field(default=None, description="Lower bound (inclusive)")
    end: datetime | None = Field(default=None, description="Upper bound (inclusive)")


class SearchFilters(BaseModel):
    """Structured predicate; every constraint that is set must hold."""

    type: list[DocumentType] | None = Field(default=None, description="Allowed document types")
    status: list[str] | None = Field(default=None, description="Allowed statuses")
    category: list[str] | None = Field(default=None, description="Allowed categories")
    tags: list[str] | None = Field(default=None, description="Document must carry at least one of these tags")
    author: str | None = Field(default=None, description="Exact author name")
    author_id: str | None = Field(default=None, description="Exact author id")
    date_range: DateRange | None = Field(default=None, description="Date range constraint")


class SearchQuery(BaseModel):
    """A read request against one index."""

    query: str = Field(default="", max_length=2000, description="Free text; empty matches every document")
    filters: SearchFilters | None = Field(default=None, description="Structured filters")
    page: int = Field(default=1, ge=1, description="1-based page number")
    page_size: int = Field(default=10, ge=1, description="Hits per page")
    sort: list[SortClause] = Field(default_factory=list, description="Sort keys in priority order")
    highlight: bool = Field(default=True, description="Return highlight snippets")
    aggregations: list[FacetField] = Field(default_factory=list, description="Fields to aggregate on")
    suggest: bool = Field(default=False, description="Return spelling/completion suggestions")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size
