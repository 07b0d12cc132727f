"""In-memory adapter — Process-local document table with search semantics.

Used for offline operation and as the test double for the network
adapters.  It mirrors their relative behaviour: case-insensitive substring
matching on title/content/description, conjunctive filters, single-field
sorting, a highlight snippet around the first match, facet counts and
title-prefix suggestions.

Usage::

    adapter = MemorySearchAdapter(index_prefix="dev")
    await adapter.connect()
    await adapter.index_document("documents", doc)
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from searchsync.adapters.base.adapter import HighlightConfig, IndexSettings, SearchAdapter
from searchsync.adapters.base.exceptions import DocumentNotFoundError, IndexOperationError
from searchsync.models.document import (
    HIGHLIGHT_FIELDS,
    SEARCHABLE_FIELDS,
    DocumentField,
    SearchableDocument,
    index_fields,
    normalize_timestamp,
)
from searchsync.models.query import SearchFilters, SearchQuery, SortClause, SortField, SortOrder
from searchsync.models.result import (
    AggregationBucket,
    BulkResult,
    SearchHit,
    SearchResult,
    SearchSuggestion,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)
_AGGREGATION_SIZE = 20
# Tags are matched through filters only, never by free text.
_MATCH_BOOSTS = {field: SEARCHABLE_FIELDS[field] for field in HIGHLIGHT_FIELDS}


@dataclass
class _Scored:
    document: SearchableDocument
    score: float


class MemorySearchAdapter(SearchAdapter):
    """Search adapter backed by a dictionary of indexes.

    Args:
        index_prefix: Optional index name prefix.
        highlight: Highlight configuration.
        **kwargs: Accepted for configuration symmetry with network adapters.
    """

    def __init__(
        self,
        index_prefix: str | None = None,
        highlight: HighlightConfig | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, highlight=highlight)
        self._extra_kwargs = kwargs
        self._indexes: dict[str, dict[str, SearchableDocument]] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def connect(self) -> None:
        self._connected = True
        logger.info("Using in-memory search backend")

    async def disconnect(self) -> None:
        self._connected = False

    async def ping(self) -> bool:
        return True

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def create_index(self, settings: IndexSettings) -> None:
        self._indexes.setdefault(self.index_name(settings.name), {})

    async def delete_index(self, name: str) -> bool:
        return self._indexes.pop(self.index_name(name), None) is not None

    async def index_exists(self, name: str) -> bool:
        return self.index_name(name) in self._indexes

    def _table(self, index: str) -> dict[str, SearchableDocument]:
        # Writes to a missing index create it, as the network backends do.
        return self._indexes.setdefault(self.index_name(index), {})

    # ── Documents ────────────────────────────────────────────────────────

    async def index_document(self, index: str, document: SearchableDocument) -> None:
        self._table(index)[document.id] = document.model_copy(deep=True)

    async def bulk_index_documents(self, index: str, documents: Sequence[SearchableDocument]) -> BulkResult:
        table = self._table(index)
        for doc in documents:
            table[doc.id] = doc.model_copy(deep=True)
        return BulkResult(success=len(documents), failed=0)

    async def update_document(self, index: str, document_id: str, changes: Mapping[str, Any]) -> None:
        table = self._table(index)
        existing = table.get(document_id)
        if existing is None:
            raise DocumentNotFoundError(f"Document '{document_id}' not found.")
        try:
            merged = SearchableDocument.model_validate(existing.to_index_source() | index_fields(changes))
        except (ValueError, ValidationError) as e:
            raise IndexOperationError(f"Invalid update for document '{document_id}': {e}") from e
        table[document_id] = merged

    async def delete_document(self, index: str, document_id: str) -> None:
        self._table(index).pop(document_id, None)

    async def get_document(self, index: str, document_id: str) -> SearchableDocument | None:
        doc = self._indexes.get(self.index_name(index), {}).get(document_id)
        return doc.model_copy(deep=True) if doc is not None else None

    # ── Queries ──────────────────────────────────────────────────────────

    async def search(self, index: str, query: SearchQuery) -> SearchResult:
        start = time.monotonic()
        table = self._indexes.get(self.index_name(index), {})
        text = query.query.strip()

        matches: list[_Scored] = []
        for doc in table.values():
            if not self._matches_filters(doc, query.filters):
                continue
            if text:
                score = self._score(doc, text)
                if score <= 0:
                    continue
            else:
                score = 1.0
            matches.append(_Scored(doc, score))

        self._sort(matches, query.sort)
        page = matches[query.offset : query.offset + query.page_size]

        hits = [
            SearchHit(
                document=m.document.model_copy(deep=True),
                score=m.score,
                highlights=self._highlight_document(m.document, text) if query.highlight and text else None,
            )
            for m in page
        ]

        aggregations = None
        if query.aggregations:
            aggregations = {
                field.value: self._aggregate([m.document for m in matches], field.value)
                for field in query.aggregations
            }

        suggestions = None
        if query.suggest and text:
            suggestions = [s.text for s in self._suggest_titles(table.values(), text, 5)]

        total = len(matches)
        return SearchResult(
            hits=hits,
            total=total,
            page=query.page,
            page_size=query.page_size,
            total_pages=SearchResult.page_count(total, query.page_size),
            took_ms=int((time.monotonic() - start) * 1000),
            suggestions=suggestions,
            aggregations=aggregations,
        )

    async def suggest(self, index: str, prefix: str, size: int = 5) -> list[SearchSuggestion]:
        table = self._indexes.get(self.index_name(index), {})
        return self._suggest_titles(table.values(), prefix, size)

    async def count(self, index: str, filters: SearchFilters | None = None) -> int:
        table = self._indexes.get(self.index_name(index), {})
        return sum(1 for doc in table.values() if self._matches_filters(doc, filters))

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _field_text(doc: SearchableDocument, field: str) -> str:
        return getattr(doc, field, None) or ""

    def _score(self, doc: SearchableDocument, text: str) -> float:
        needle = text.lower()
        return float(
            sum(boost for field, boost in _MATCH_BOOSTS.items() if needle in self._field_text(doc, field).lower())
        )

    @staticmethod
    def _matches_filters(doc: SearchableDocument, filters: SearchFilters | None) -> bool:
        if filters is None:
            return True
        if filters.type and doc.type not in filters.type:
            return False
        if filters.status and doc.status not in filters.status:
            return False
        if filters.category and doc.category not in filters.category:
            return False
        if filters.tags and not set(filters.tags) & set(doc.tags):
            return False
        if filters.author is not None and doc.author != filters.author:
            return False
        if filters.author_id is not None and doc.author_id != filters.author_id:
            return False
        if filters.date_range:
            rng = filters.date_range
            value = doc.created_at if rng.field.value == DocumentField.CREATED_AT else doc.updated_at
            if value is None:
                return False
            if rng.start and value < normalize_timestamp(rng.start):
                return False
            if rng.end and value > normalize_timestamp(rng.end):
                return False
        return True

    @staticmethod
    def _sort(matches: list[_Scored], sort: list[SortClause]) -> None:
        if not sort:
            matches.sort(key=lambda m: (m.score, m.document.created_at), reverse=True)
            return

        # Only the first clause is honoured.
        clause = sort[0]
        reverse = clause.order == SortOrder.DESC
        if clause.field == SortField.SCORE:
            matches.sort(key=lambda m: m.score, reverse=reverse)
        elif clause.field == SortField.CREATED_AT:
            matches.sort(key=lambda m: m.document.created_at, reverse=reverse)
        elif clause.field == SortField.UPDATED_AT:
            matches.sort(key=lambda m: m.document.updated_at or _EPOCH, reverse=reverse)
        else:
            matches.sort(key=lambda m: m.document.title.lower(), reverse=reverse)

    def _highlight_document(self, doc: SearchableDocument, text: str) -> dict[str, list[str]] | None:
        highlights: dict[str, list[str]] = {}
        for field in HIGHLIGHT_FIELDS:
            snippet = self._snippet(self._field_text(doc, field), text)
            if snippet:
                highlights[field] = [snippet]
        return highlights or None

    def _snippet(self, value: str, text: str) -> str | None:
        """Extract a fragment around the first match of ``text`` with markup."""
        pos = value.lower().find(text.lower())
        if pos < 0:
            return None
        size = self._highlight.fragment_size
        start = max(0, pos - max(0, size - len(text)) // 2)
        end = min(len(value), max(start + size, pos + len(text)))
        match_end = pos + len(text)
        return (
            value[start:pos]
            + self._highlight.pre_tag
            + value[pos:match_end]
            + self._highlight.post_tag
            + value[match_end:end]
        )

    @staticmethod
    def _aggregate(docs: list[SearchableDocument], field: str) -> list[AggregationBucket]:
        counter: Counter[str] = Counter()
        for doc in docs:
            value = doc.to_index_source().get(field)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            counter.update(str(getattr(v, "value", v)) for v in values)
        ranked = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
        return [AggregationBucket(key=k, count=c) for k, c in ranked[:_AGGREGATION_SIZE]]

    @staticmethod
    def _suggest_titles(docs: Any, prefix: str, size: int) -> list[SearchSuggestion]:
        needle = prefix.strip().lower()
        if not needle:
            return []
        scores: dict[str, float] = {}
        for doc in docs:
            title = doc.title
            lowered = title.lower()
            if lowered.startswith(needle):
                score = 1.0
            elif any(word.startswith(needle) for word in lowered.split()):
                score = 0.5
            else:
                continue
            scores[title] = max(score, scores.get(title, 0.0))
        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
        return [SearchSuggestion(text=t, score=s) for t, s in ranked[:size]]
