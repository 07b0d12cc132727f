"""Integration tests for OpenSearchAdapter against a real OpenSearch cluster."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from searchsync.adapters.base.adapter import IndexSettings
from searchsync.adapters.opensearch.adapter import OpenSearchAdapter
from searchsync.config.settings import SyncSettings
from searchsync.core.service import SearchService
from searchsync.core.sync import IndexSyncEngine
from searchsync.models.document import DocumentType, SearchableDocument
from searchsync.models.query import SearchFilters, SearchQuery

pytestmark = [pytest.mark.integration, pytest.mark.opensearch]

INDEX = "documents"


@pytest.fixture
async def adapter(opensearch_ready: str, index_prefix: str) -> AsyncIterator[OpenSearchAdapter]:
    a = OpenSearchAdapter(hosts=[opensearch_ready], verify_certs=False, refresh="wait_for", index_prefix=index_prefix)
    await a.connect()
    await a.create_index(IndexSettings(name=INDEX))
    yield a
    await a.delete_index(INDEX)
    await a.disconnect()


@pytest.fixture
async def seeded(adapter: OpenSearchAdapter, mock_documents: list[SearchableDocument]) -> OpenSearchAdapter:
    result = await adapter.bulk_index_documents(INDEX, mock_documents)
    assert result.failed == 0
    return adapter


class TestOpenSearchIndex:
    async def test_ping(self, adapter: OpenSearchAdapter) -> None:
        assert await adapter.ping() is True

    async def test_create_index_is_idempotent(self, adapter: OpenSearchAdapter) -> None:
        await adapter.create_index(IndexSettings(name=INDEX))
        assert await adapter.index_exists(INDEX) is True

    async def test_delete_missing_index(self, adapter: OpenSearchAdapter) -> None:
        assert await adapter.delete_index("never_created") is False


class TestOpenSearchDocuments:
    async def test_round_trip(self, adapter: OpenSearchAdapter, mock_documents: list[SearchableDocument]) -> None:
        doc = mock_documents[0]
        await adapter.index_document(INDEX, doc)
        assert await adapter.get_document(INDEX, doc.id) == doc

    async def test_partial_update(self, seeded: OpenSearchAdapter) -> None:
        await seeded.update_document(INDEX, "doc-002", {"status": "published"})
        assert (await seeded.get_document(INDEX, "doc-002")).status == "published"

    async def test_delete_is_idempotent(self, seeded: OpenSearchAdapter) -> None:
        await seeded.delete_document(INDEX, "doc-001")
        await seeded.delete_document(INDEX, "doc-001")
        assert await seeded.get_document(INDEX, "doc-001") is None


class TestOpenSearchSearch:
    async def test_search_with_highlight(self, seeded: OpenSearchAdapter) -> None:
        result = await seeded.search(INDEX, SearchQuery(query="nowcasting"))
        assert result.total == 1
        hit = result.hits[0]
        assert hit.document.id == "doc-001"
        assert any("<mark>" in frag for frags in hit.highlights.values() for frag in frags)

    async def test_type_filter(self, seeded: OpenSearchAdapter) -> None:
        result = await seeded.search(INDEX, SearchQuery(filters=SearchFilters(type=[DocumentType.ARTICLE])))
        assert {h.document.id for h in result.hits} == {"doc-001", "doc-002"}

    async def test_tags_any_of(self, seeded: OpenSearchAdapter) -> None:
        assert await seeded.count(INDEX, SearchFilters(tags=["solar", "finance"])) == 3

    async def test_suggest(self, seeded: OpenSearchAdapter) -> None:
        suggestions = await seeded.suggest(INDEX, "Fede")
        assert [s.text for s in suggestions] == ["Federated Learning for Medical Imaging"]


class TestOpenSearchSync:
    async def test_queued_create_then_delete(
        self, adapter: OpenSearchAdapter, mock_documents: list[SearchableDocument]
    ) -> None:
        service = SearchService(adapter, index_name=INDEX)
        engine = IndexSyncEngine(service, SyncSettings(realtime=False))
        doc = mock_documents[0]

        await engine.on_create(doc)
        await engine.on_delete(doc.id, doc.type)
        await engine.process_queue()

        assert await service.get(doc.id) is None
