"""Shared test fixtures and configuration."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from searchsync.adapters.memory.adapter import MemorySearchAdapter
from searchsync.config.settings import Settings
from searchsync.core.service import SearchService
from searchsync.models.document import DocumentType, SearchableDocument


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance backed by the in-memory adapter."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        search={"provider": "memory", "index_name": "test_docs"},
        sync={"realtime": True, "retry_interval": 0.01, "drain_interval": 0.01},
    )


@pytest.fixture
def report_doc() -> SearchableDocument:
    return SearchableDocument(
        id="doc-1",
        type=DocumentType.DOCUMENT,
        title="Quarterly Report",
        content="In the third quarter revenue increased by twelve percent across all regions.",
        description="Finance summary for Q3",
        author="Alice Zhang",
        author_id="u-1",
        tags=["finance", "report"],
        category="finance",
        status="published",
        created_at=datetime(2024, 10, 1, 9, 30, tzinfo=UTC),
    )


@pytest.fixture
def sample_docs(report_doc: SearchableDocument) -> list[SearchableDocument]:
    """A project, two articles and the quarterly report."""
    return [
        SearchableDocument(
            id="proj-1",
            type=DocumentType.PROJECT,
            title="Search Platform Migration",
            content="Move the search cluster to managed OpenSearch.",
            tags=["search", "infra"],
            status="active",
            created_at=datetime(2024, 1, 10, tzinfo=UTC),
        ),
        SearchableDocument(
            id="art-1",
            type=DocumentType.ARTICLE,
            title="Getting Started with Solar Panels",
            content="A practical guide to residential solar installations.",
            author="Bob Li",
            tags=["solar", "energy"],
            category="energy",
            status="published",
            created_at=datetime(2024, 3, 5, tzinfo=UTC),
        ),
        SearchableDocument(
            id="art-2",
            type=DocumentType.ARTICLE,
            title="Wind Power Forecasting",
            content="Forecasting wind farm output with weather models.",
            author="Alice Zhang",
            tags=["wind", "energy"],
            category="energy",
            status="draft",
            created_at=datetime(2024, 6, 20, tzinfo=UTC),
        ),
        report_doc,
    ]


@pytest.fixture
async def memory_adapter() -> MemorySearchAdapter:
    adapter = MemorySearchAdapter(index_prefix="test")
    await adapter.connect()
    return adapter


@pytest.fixture
async def service(memory_adapter: MemorySearchAdapter) -> SearchService:
    svc = SearchService(memory_adapter, index_name="docs")
    await svc.initialize()
    return svc
