"""Base search adapter — Abstract interface for all search backends.

Every backend must implement this interface to be usable by
``SearchService``.  The adapter is responsible for:
  1. Connection lifecycle and health probing
  2. Index lifecycle (create / delete / exists)
  3. Translating ``SearchableDocument`` to the backend's storage format and back
  4. Translating ``SearchQuery`` to the backend's query DSL
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from searchsync.models.document import SearchableDocument
from searchsync.models.query import SearchFilters, SearchQuery
from searchsync.models.result import BulkResult, SearchResult, SearchSuggestion


class HighlightConfig(BaseModel):
    """Highlight markup and fragment sizing."""

    pre_tag: str = Field(default="<mark>", description="Markup inserted before a match")
    post_tag: str = Field(default="</mark>", description="Markup inserted after a match")
    fragment_size: int = Field(default=150, ge=1, description="Fragment length in characters")
    number_of_fragments: int = Field(default=3, ge=1, description="Maximum fragments per field")


class IndexSettings(BaseModel):
    """Index creation request.

    ``mappings`` and ``analysis`` are backend-specific overrides; when left
    empty the adapter applies its own canonical configuration.
    """

    name: str = Field(description="Logical index name (without prefix)")
    number_of_shards: int = Field(default=1, ge=1)
    number_of_replicas: int = Field(default=0, ge=0)
    mappings: dict[str, Any] | None = Field(default=None)
    analysis: dict[str, Any] | None = Field(default=None)


class SearchAdapter(ABC):
    """Abstract base class for search backend adapters.

    Adapters hold no document state.  Apart from the immutable connection
    settings and a client that is safe for concurrent use, nothing is shared
    between calls, so one adapter may serve the real-time path and the sync
    drain loop at the same time.

    Args:
        index_prefix: Optional prefix joined to every logical index name
            as ``"{prefix}_{name}"``.
        highlight: Highlight configuration used by ``search()``.
    """

    def __init__(self, index_prefix: str | None = None, highlight: HighlightConfig | None = None) -> None:
        self._index_prefix = index_prefix or ""
        self._highlight = highlight or HighlightConfig()
        self._connected = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique adapter name (e.g., 'opensearch', 'meilisearch')."""

    def index_name(self, name: str) -> str:
        """Resolve a logical index name to the physical one."""
        return f"{self._index_prefix}_{name}" if self._index_prefix else name

    def is_connected(self) -> bool:
        return self._connected

    # ── Connection ───────────────────────────────────────────────────────

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and verify the backend is reachable.

        Raises:
            ConnectionError: If the backend does not answer the health probe.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connections and release resources."""

    @abstractmethod
    async def ping(self) -> bool:
        """Lightweight health probe.  Never raises."""

    # ── Index lifecycle ──────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, settings: IndexSettings) -> None:
        """Create the index; succeeds without change if it already exists."""

    @abstractmethod
    async def delete_index(self, name: str) -> bool:
        """Delete an index.  Returns ``False`` if it did not exist."""

    @abstractmethod
    async def index_exists(self, name: str) -> bool:
        """Check whether an index exists."""

    # ── Documents ────────────────────────────────────────────────────────

    @abstractmethod
    async def index_document(self, index: str, document: SearchableDocument) -> None:
        """Insert or fully replace a document."""

    @abstractmethod
    async def bulk_index_documents(self, index: str, documents: Sequence[SearchableDocument]) -> BulkResult:
        """Insert or replace many documents, reporting per-batch counts."""

    @abstractmethod
    async def update_document(self, index: str, document_id: str, changes: Mapping[str, Any]) -> None:
        """Merge ``changes`` into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def delete_document(self, index: str, document_id: str) -> None:
        """Delete a document.  Deleting an absent document is not an error."""

    @abstractmethod
    async def get_document(self, index: str, document_id: str) -> SearchableDocument | None:
        """Fetch a document by id, or ``None`` if it does not exist."""

    # ── Queries ──────────────────────────────────────────────────────────

    @abstractmethod
    async def search(self, index: str, query: SearchQuery) -> SearchResult:
        """Execute a search query.

        Raises:
            QueryError: If the backend rejects or fails the query.
        """

    @abstractmethod
    async def suggest(self, index: str, prefix: str, size: int = 5) -> list[SearchSuggestion]:
        """Complete ``prefix`` against document titles."""

    @abstractmethod
    async def count(self, index: str, filters: SearchFilters | None = None) -> int:
        """Count documents matching ``filters`` without fetching them."""
