"""Search service — Facade binding one adapter to one logical index.

Callers never pass an index name: the service holds it and the adapter
applies its configured prefix.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from searchsync.adapters.base.adapter import IndexSettings, SearchAdapter
from searchsync.models.document import DocumentType, SearchableDocument
from searchsync.models.query import SearchFilters, SearchQuery
from searchsync.models.result import BulkResult, IndexStats, SearchResult, SearchSuggestion

logger = logging.getLogger(__name__)


class SearchService:
    """Backend-agnostic entry point for indexing and querying documents.

    Args:
        adapter: The search adapter to delegate to.
        index_name: Logical index name (without prefix).
        index_settings: Settings used when the index has to be created.
    """

    def __init__(
        self,
        adapter: SearchAdapter,
        index_name: str = "documents",
        index_settings: IndexSettings | None = None,
    ) -> None:
        self.adapter = adapter
        self.index_name = index_name
        self._index_settings = index_settings or IndexSettings(name=index_name)
        self._ready = False

    async def initialize(self) -> None:
        """Connect the adapter and make sure the index exists."""
        await self.adapter.connect()
        await self.adapter.create_index(self._index_settings)
        self._ready = True
        logger.info(
            "Search service ready: backend=%s index=%s",
            self.adapter.name,
            self.adapter.index_name(self.index_name),
        )

    async def shutdown(self) -> None:
        await self.adapter.disconnect()
        self._ready = False
        logger.info("Search service shut down")

    async def ping(self) -> bool:
        return await self.adapter.ping()

    async def ensure_index(self) -> None:
        """Connect and create the index if that has not succeeded yet.

        Runs before every operation, so a backend that was down during
        ``initialize()`` gets its index with the canonical settings on first
        use instead of one implicitly created by a document write.
        """
        if self._ready:
            return
        if not self.adapter.is_connected():
            await self.adapter.connect()
        await self.adapter.create_index(self._index_settings)
        self._ready = True
        logger.info("Index %s ensured after deferred startup", self.adapter.index_name(self.index_name))

    # ── Writes ───────────────────────────────────────────────────────────

    async def index(self, document: SearchableDocument) -> None:
        await self.ensure_index()
        await self.adapter.index_document(self.index_name, document)

    async def bulk_index(self, documents: Sequence[SearchableDocument]) -> BulkResult:
        await self.ensure_index()
        result = await self.adapter.bulk_index_documents(self.index_name, documents)
        if result.failed:
            logger.warning("Bulk index: %d succeeded, %d failed", result.success, result.failed)
        return result

    async def update(self, document_id: str, changes: Mapping[str, Any]) -> None:
        await self.ensure_index()
        await self.adapter.update_document(self.index_name, document_id, changes)

    async def delete(self, document_id: str) -> None:
        await self.ensure_index()
        await self.adapter.delete_document(self.index_name, document_id)

    async def get(self, document_id: str) -> SearchableDocument | None:
        await self.ensure_index()
        return await self.adapter.get_document(self.index_name, document_id)

    # ── Reads ────────────────────────────────────────────────────────────

    async def search(self, query: SearchQuery) -> SearchResult:
        await self.ensure_index()
        return await self.adapter.search(self.index_name, query)

    async def suggest(self, prefix: str, size: int = 5) -> list[SearchSuggestion]:
        await self.ensure_index()
        return await self.adapter.suggest(self.index_name, prefix, size)

    async def count(self, filters: SearchFilters | None = None) -> int:
        await self.ensure_index()
        return await self.adapter.count(self.index_name, filters)

    async def get_stats(self) -> IndexStats:
        """Count documents in total and per document type."""
        total = await self.count()
        by_type: dict[str, int] = {}
        for doc_type in DocumentType:
            by_type[doc_type.value] = await self.count(SearchFilters(type=[doc_type]))
        return IndexStats(total=total, by_type=by_type)

    async def reset_index(self) -> None:
        """Drop the index and create it again, empty."""
        if not self.adapter.is_connected():
            await self.adapter.connect()
        await self.adapter.delete_index(self.index_name)
        await self.adapter.create_index(self._index_settings)
        self._ready = True
        logger.warning("Index %s was reset", self.adapter.index_name(self.index_name))
