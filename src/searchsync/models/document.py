"""Searchable document model — The unit of indexing shared by every adapter.

Field names used inside a search index are the camelCase aliases declared
here (``createdAt``, ``authorId`` ...).  Adapters must reference the
``DocumentField`` constants and the canonical field lists below rather than
spelling field names themselves.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentType(str, Enum):
    """Closed set of document kinds that can be indexed."""

    PROJECT = "project"
    ARTICLE = "article"
    DOCUMENT = "document"
    TASK = "task"
    CASE = "case"
    SERVICE = "service"
    PRODUCT = "product"
    USER = "user"


class DocumentField:
    """Index field names of ``SearchableDocument``."""

    ID = "id"
    TYPE = "type"
    TITLE = "title"
    CONTENT = "content"
    DESCRIPTION = "description"
    AUTHOR = "author"
    AUTHOR_ID = "authorId"
    TAGS = "tags"
    CATEGORY = "category"
    STATUS = "status"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    METADATA = "metadata"


# Full-text fields with their relative boost.
SEARCHABLE_FIELDS: dict[str, int] = {
    DocumentField.TITLE: 3,
    DocumentField.DESCRIPTION: 2,
    DocumentField.TAGS: 2,
    DocumentField.CONTENT: 1,
}

HIGHLIGHT_FIELDS: tuple[str, ...] = (
    DocumentField.TITLE,
    DocumentField.CONTENT,
    DocumentField.DESCRIPTION,
)

FILTERABLE_FIELDS: tuple[str, ...] = (
    DocumentField.TYPE,
    DocumentField.STATUS,
    DocumentField.AUTHOR,
    DocumentField.AUTHOR_ID,
    DocumentField.CATEGORY,
    DocumentField.TAGS,
    DocumentField.CREATED_AT,
    DocumentField.UPDATED_AT,
)

SORTABLE_FIELDS: tuple[str, ...] = (
    DocumentField.CREATED_AT,
    DocumentField.UPDATED_AT,
    DocumentField.TITLE,
)

DATE_FIELDS: tuple[str, ...] = (DocumentField.CREATED_AT, DocumentField.UPDATED_AT)


def normalize_timestamp(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime with millisecond precision.

    Naive datetimes are taken to be UTC.  Millisecond precision is the
    finest resolution every backend date encoding can carry.
    """
    value = value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class SearchableDocument(BaseModel):
    """A document as seen by the search layer.

    ``id``, ``type``, ``title``, ``content`` and ``created_at`` are required;
    a missing value raises ``pydantic.ValidationError``.  Re-indexing the
    same ``id`` replaces the previous version.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, description="Stable unique document identifier")
    type: DocumentType = Field(description="Document kind")
    title: str = Field(description="Document title")
    content: str = Field(description="Main searchable text")
    description: str | None = Field(default=None, description="Short summary")
    author: str | None = Field(default=None, description="Author display name")
    author_id: str | None = Field(default=None, alias="authorId", description="Author identifier")
    tags: list[str] = Field(default_factory=list, description="Tags (duplicates are dropped)")
    category: str | None = Field(default=None, description="Category name")
    status: str | None = Field(default=None, description="Free-form workflow status")
    created_at: datetime = Field(alias="createdAt", description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, alias="updatedAt", description="Last modification timestamp")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque data, never searched")

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_dates(cls, v: datetime | None) -> datetime | None:
        return normalize_timestamp(v) if v is not None else None

    def to_index_source(self) -> dict[str, Any]:
        """Serialize with index field names, keeping ``datetime`` values intact."""
        return self.model_dump(by_alias=True)


_FIELD_ALIASES: dict[str, str] = {
    name: (info.alias or name) for name, info in SearchableDocument.model_fields.items()
}
_INDEX_NAMES: frozenset[str] = frozenset(_FIELD_ALIASES.values())


def index_fields(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Translate a partial update into index field names.

    Keys may be Python attribute names or index field names.  Dates are
    normalized the same way as on a full document.

    Raises:
        ValueError: On unknown fields or an attempt to change ``id``.
    """
    out: dict[str, Any] = {}
    for key, value in changes.items():
        field = _FIELD_ALIASES.get(key, key)
        if field not in _INDEX_NAMES:
            raise ValueError(f"Unknown document field: {key!r}")
        if field == DocumentField.ID:
            raise ValueError("Document id cannot be changed by an update")
        if field == DocumentField.TYPE and value is not None:
            value = DocumentType(value)
        if field in DATE_FIELDS and isinstance(value, datetime):
            value = normalize_timestamp(value)
        out[field] = value
    return out
