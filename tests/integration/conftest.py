"""Integration test fixtures — Live search backends seeded through the adapters.

Backends are located through environment variables and the tests are skipped
when a backend does not answer:

    SEARCHSYNC_TEST_OPENSEARCH_URL    (default http://localhost:9200)
    SEARCHSYNC_TEST_MEILISEARCH_URL   (default http://localhost:7700)
    SEARCHSYNC_TEST_MEILISEARCH_KEY   (default test-master-key)

Each test gets its own index prefix, so runs never see each other's data.
"""

from __future__ import annotations

import os
import time
import uuid
from datetime import UTC, datetime

import httpx
import pytest

from searchsync.models.document import DocumentType, SearchableDocument

MOCK_DOCUMENTS: list[SearchableDocument] = [
    SearchableDocument(
        id="doc-001",
        type=DocumentType.ARTICLE,
        title="Advances in Solar Nowcasting Using Deep Learning",
        content=(
            "This paper presents a deep learning approach for solar irradiance nowcasting. "
            "A convolutional network processes satellite imagery to predict irradiance up to 4 hours ahead."
        ),
        author="Alice Johnson",
        author_id="u-alice",
        tags=["solar", "deep-learning"],
        category="energy",
        status="published",
        created_at=datetime(2024, 6, 15, tzinfo=UTC),
    ),
    SearchableDocument(
        id="doc-002",
        type=DocumentType.ARTICLE,
        title="Transformer Models for Natural Language Understanding",
        content="A survey of transformer-based models for natural language understanding tasks.",
        author="Bob Smith",
        author_id="u-bob",
        tags=["nlp", "transformers"],
        category="ml",
        status="draft",
        created_at=datetime(2024, 3, 20, tzinfo=UTC),
    ),
    SearchableDocument(
        id="doc-003",
        type=DocumentType.PROJECT,
        title="Federated Learning for Medical Imaging",
        content="Training image classifiers across hospital sites without sharing patient data.",
        author="Carol Zhang",
        tags=["privacy", "medical"],
        category="ml",
        status="active",
        created_at=datetime(2024, 9, 1, tzinfo=UTC),
    ),
    SearchableDocument(
        id="doc-004",
        type=DocumentType.TASK,
        title="Benchmark solar panel inverters",
        content="Compare inverter efficiency for the rooftop installation.",
        tags=["solar"],
        status="open",
        created_at=datetime(2024, 1, 10, tzinfo=UTC),
    ),
    SearchableDocument(
        id="doc-005",
        type=DocumentType.DOCUMENT,
        title="季度报告 Quarterly Report",
        content="第三季度收入增长百分之十二。Revenue grew twelve percent in the third quarter.",
        author="Dana Wu",
        tags=["finance"],
        category="finance",
        status="published",
        created_at=datetime(2024, 10, 1, tzinfo=UTC),
    ),
]


@pytest.fixture
def mock_documents() -> list[SearchableDocument]:
    return [doc.model_copy(deep=True) for doc in MOCK_DOCUMENTS]


def _wait_for_service(url: str, timeout: float = 10.0) -> bool:
    """Block until *url* returns HTTP 200, or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            r = httpx.get(url, timeout=5)
            if r.status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        time.sleep(1)
    return False


@pytest.fixture
def index_prefix() -> str:
    return f"it_{uuid.uuid4().hex[:8]}"


# ── OpenSearch ──────────────────────────────────────────────────


@pytest.fixture(scope="session")
def opensearch_ready() -> str:
    """Ensure OpenSearch is reachable."""
    host = os.environ.get("SEARCHSYNC_TEST_OPENSEARCH_URL", "http://localhost:9200")
    if not _wait_for_service(host):
        pytest.skip(f"OpenSearch not available at {host}")
    return host


# ── MeiliSearch ─────────────────────────────────────────────────


@pytest.fixture(scope="session")
def meilisearch_ready() -> tuple[str, str]:
    """Ensure MeiliSearch is reachable. Returns (url, api_key)."""
    host = os.environ.get("SEARCHSYNC_TEST_MEILISEARCH_URL", "http://localhost:7700")
    if not _wait_for_service(f"{host}/health"):
        pytest.skip(f"MeiliSearch not available at {host}")
    return host, os.environ.get("SEARCHSYNC_TEST_MEILISEARCH_KEY", "test-master-key")
