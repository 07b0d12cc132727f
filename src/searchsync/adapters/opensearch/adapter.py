"""OpenSearch adapter — Full-text search on OpenSearch (v2+) and compatible clusters.

OpenSearch is an AWS-maintained fork of Elasticsearch with a compatible
query DSL and API surface.  This adapter uses ``opensearch-py`` (async).

Dates are stored as ISO-8601 strings, bulk writes go through ``_bulk`` whose
per-item results are returned synchronously, and authentication is either
HTTP basic (``username``/``password``) or an ``ApiKey`` header.

Install the client library::

    pip install opensearch-py
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from searchsync.adapters.base.adapter import HighlightConfig, IndexSettings, SearchAdapter
from searchsync.adapters.base.exceptions import (
    AdapterError,
    ConfigurationError,
    ConnectionError,
    DocumentNotFoundError,
    IndexOperationError,
    QueryError,
)
from searchsync.adapters.opensearch.mappings import (
    ANALYSIS_SETTINGS,
    INDEX_MAPPINGS,
    TITLE_KEYWORD_FIELD,
    TITLE_SUGGEST_FIELD,
)
from searchsync.models.document import (
    HIGHLIGHT_FIELDS,
    SEARCHABLE_FIELDS,
    DocumentField,
    SearchableDocument,
    index_fields,
    normalize_timestamp,
)
from searchsync.models.query import SearchFilters, SearchQuery, SortField
from searchsync.models.result import (
    AggregationBucket,
    BulkResult,
    SearchHit,
    SearchResult,
    SearchSuggestion,
)

logger = logging.getLogger(__name__)

_AGGREGATION_SIZE = 20
_CONNECTION_ERRORS = {"ConnectionError", "ConnectionTimeout", "SSLError"}


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "status_code", None) == 404 or type(exc).__name__ == "NotFoundError"


def _translate(exc: Exception, default: type[AdapterError], message: str) -> AdapterError:
    """Map a client exception onto the adapter exception taxonomy."""
    if isinstance(exc, AdapterError):
        return exc
    if type(exc).__name__ in _CONNECTION_ERRORS:
        return ConnectionError(f"{message}: {exc}")
    return default(f"{message}: {exc}")


class OpenSearchAdapter(SearchAdapter):
    """Search adapter for OpenSearch (v2+).

    Supports:
      - Multi-field full-text search with fuzziness (BM25)
      - Term/range filters, sorting, highlighting, term aggregations
      - Term suggestions and completion-based title suggestions

    Args:
        hosts: List of node URLs.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        api_key: Optional encoded API key, sent as ``Authorization: ApiKey ...``.
        verify_certs: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.
        refresh: Refresh policy for writes (``False``, ``True`` or ``"wait_for"``).
        index_prefix: Optional index name prefix.
        highlight: Highlight configuration.
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
    """

    def __init__(
        self,
        hosts: list[str] | None = None,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        verify_certs: bool = True,
        timeout: float = 30.0,
        refresh: bool | str = False,
        index_prefix: str | None = None,
        highlight: HighlightConfig | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, highlight=highlight)
        self._hosts = hosts or ["http://localhost:9200"]
        self._username = username
        self._password = password
        self._api_key = api_key
        self._verify_certs = verify_certs
        self._timeout = timeout
        self._refresh = refresh
        self._extra_kwargs = kwargs
        self._client: Any = None

    @property
    def name(self) -> str:
        return "opensearch"

    # ── Connection ───────────────────────────────────────────────────────

    def _create_client(self) -> Any:
        try:
            from opensearchpy import AsyncOpenSearch
        except ImportError as e:
            raise ConfigurationError(
                "opensearch-py package is required.  Install with: pip install opensearch-py"
            ) from e

        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._timeout,
        }
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)
        if self._api_key:
            client_kwargs["headers"] = {"Authorization": f"ApiKey {self._api_key}"}

        client_kwargs.update(self._extra_kwargs)
        return AsyncOpenSearch(**client_kwargs)

    async def connect(self) -> None:
        """Create the ``AsyncOpenSearch`` client and verify cluster health."""
        if self._client is None:
            self._client = self._create_client()

        if not await self.ping():
            self._connected = False
            raise ConnectionError(f"Failed to connect to OpenSearch at {', '.join(self._hosts)}")

        self._connected = True
        logger.info("Connected to OpenSearch at %s", ", ".join(self._hosts))

    async def disconnect(self) -> None:
        """Close the OpenSearch client."""
        if self._client:
            await self._client.close()
            self._client = None
        self._connected = False

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            health = await self._client.cluster.health()
            return health.get("status") in ("green", "yellow")
        except Exception:
            logger.debug("OpenSearch health probe failed", exc_info=True)
            return False

    def _require_client(self) -> Any:
        if not self._client:
            raise ConnectionError("OpenSearch client not initialized.")
        return self._client

    @property
    def _write_params(self) -> dict[str, Any]:
        return {"refresh": self._refresh} if self._refresh else {}

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def create_index(self, settings: IndexSettings) -> None:
        client = self._require_client()
        name = self.index_name(settings.name)

        if await self.index_exists(settings.name):
            logger.info("Index %s already exists", name)
            return

        body = {
            "settings": {
                "number_of_shards": settings.number_of_shards,
                "number_of_replicas": settings.number_of_replicas,
                **(settings.analysis or ANALYSIS_SETTINGS),
            },
            "mappings": settings.mappings or INDEX_MAPPINGS,
        }
        try:
            await client.indices.create(index=name, body=body)
        except Exception as e:
            if getattr(e, "error", None) == "resource_already_exists_exception":
                return
            raise _translate(e, IndexOperationError, f"Failed to create index {name}") from e
        logger.info("Index %s created", name)

    async def delete_index(self, name: str) -> bool:
        client = self._require_client()
        full_name = self.index_name(name)
        try:
            await client.indices.delete(index=full_name)
        except Exception as e:
            if _is_not_found(e):
                return False
            raise _translate(e, IndexOperationError, f"Failed to delete index {full_name}") from e
        logger.info("Index %s deleted", full_name)
        return True

    async def index_exists(self, name: str) -> bool:
        client = self._require_client()
        try:
            return bool(await client.indices.exists(index=self.index_name(name)))
        except Exception as e:
            raise _translate(e, IndexOperationError, "Failed to check index existence") from e

    # ── Documents ────────────────────────────────────────────────────────

    async def index_document(self, index: str, document: SearchableDocument) -> None:
        client = self._require_client()
        try:
            await client.index(
                index=self.index_name(index),
                id=document.id,
                body=self._encode(document),
                **self._write_params,
            )
        except Exception as e:
            raise _translate(e, IndexOperationError, f"Failed to index document '{document.id}'") from e

    async def bulk_index_documents(self, index: str, documents: Sequence[SearchableDocument]) -> BulkResult:
        client = self._require_client()
        if not documents:
            return BulkResult()

        full_name = self.index_name(index)
        body: list[dict[str, Any]] = []
        for doc in documents:
            body.append({"index": {"_index": full_name, "_id": doc.id}})
            body.append(self._encode(doc))

        try:
            response = await client.bulk(body=body, **self._write_params)
        except Exception as e:
            raise _translate(e, IndexOperationError, "OpenSearch bulk request failed") from e

        result = BulkResult()
        for item in response.get("items", []):
            op = item.get("index") or next(iter(item.values()), {})
            error = op.get("error")
            if error:
                result.failed += 1
                reason = error.get("reason", str(error)) if isinstance(error, dict) else str(error)
                result.errors[str(op.get("_id", ""))] = reason
            else:
                result.success += 1
        return result

    async def update_document(self, index: str, document_id: str, changes: Mapping[str, Any]) -> None:
        client = self._require_client()
        try:
            partial = self._encode_partial(changes)
        except ValueError as e:
            raise IndexOperationError(f"Invalid update for document '{document_id}': {e}") from e

        try:
            await client.update(
                index=self.index_name(index),
                id=document_id,
                body={"doc": partial},
                **self._write_params,
            )
        except Exception as e:
            if _is_not_found(e):
                raise DocumentNotFoundError(f"Document '{document_id}' not found.") from e
            raise _translate(e, IndexOperationError, f"Failed to update document '{document_id}'") from e

    async def delete_document(self, index: str, document_id: str) -> None:
        client = self._require_client()
        try:
            await client.delete(index=self.index_name(index), id=document_id, **self._write_params)
        except Exception as e:
            if _is_not_found(e):
                return
            raise _translate(e, IndexOperationError, f"Failed to delete document '{document_id}'") from e

    async def get_document(self, index: str, document_id: str) -> SearchableDocument | None:
        client = self._require_client()
        try:
            response = await client.get(index=self.index_name(index), id=document_id)
        except Exception as e:
            if _is_not_found(e):
                return None
            raise _translate(e, QueryError, f"Failed to fetch document '{document_id}'") from e

        if not response.get("found", True):
            return None
        return self._decode(response.get("_source", {}))

    # ── Queries ──────────────────────────────────────────────────────────

    async def search(self, index: str, query: SearchQuery) -> SearchResult:
        """Execute a full-text query against OpenSearch."""
        client = self._require_client()
        body = self.build_search_body(query)

        try:
            start = time.monotonic()
            response = await client.search(index=self.index_name(index), body=body)
            took_ms = int((time.monotonic() - start) * 1000)
        except Exception as e:
            raise _translate(e, QueryError, "OpenSearch query failed") from e

        hits_block = response.get("hits", {})
        raw_total = hits_block.get("total", 0)
        total = raw_total if isinstance(raw_total, int) else raw_total.get("value", 0)

        hits = [
            SearchHit(
                document=self._decode(hit.get("_source", {})),
                score=hit.get("_score") or 0.0,
                highlights=hit.get("highlight") or None,
            )
            for hit in hits_block.get("hits", [])
        ]

        aggregations = None
        if response.get("aggregations"):
            aggregations = {
                name: [
                    AggregationBucket(key=str(b.get("key_as_string", b["key"])), count=b["doc_count"])
                    for b in agg.get("buckets", [])
                ]
                for name, agg in response["aggregations"].items()
            }

        suggestions = None
        if response.get("suggest", {}).get("title_suggest"):
            suggestions = [
                option["text"]
                for entry in response["suggest"]["title_suggest"]
                for option in entry.get("options", [])
            ]

        return SearchResult(
            hits=hits,
            total=total,
            page=query.page,
            page_size=query.page_size,
            total_pages=SearchResult.page_count(total, query.page_size),
            took_ms=took_ms,
            suggestions=suggestions,
            aggregations=aggregations,
        )

    async def suggest(self, index: str, prefix: str, size: int = 5) -> list[SearchSuggestion]:
        client = self._require_client()
        body = {
            "_source": False,
            "suggest": {
                "title_suggest": {
                    "prefix": prefix,
                    "completion": {"field": TITLE_SUGGEST_FIELD, "size": size, "skip_duplicates": True},
                }
            },
        }
        try:
            response = await client.search(index=self.index_name(index), body=body)
        except Exception as e:
            raise _translate(e, QueryError, "OpenSearch suggest failed") from e

        return [
            SearchSuggestion(text=option["text"], score=option.get("_score") or 0.0)
            for entry in response.get("suggest", {}).get("title_suggest", [])
            for option in entry.get("options", [])
        ]

    async def count(self, index: str, filters: SearchFilters | None = None) -> int:
        client = self._require_client()
        clauses = self.build_filters(filters) if filters else []
        body: dict[str, Any] = {"query": {"bool": {"filter": clauses}}} if clauses else {}
        try:
            response = await client.count(index=self.index_name(index), body=body)
        except Exception as e:
            raise _translate(e, QueryError, "OpenSearch count failed") from e
        return int(response.get("count", 0))

    # ── Query DSL ────────────────────────────────────────────────────────

    def build_search_body(self, query: SearchQuery) -> dict[str, Any]:
        """Translate a ``SearchQuery`` into an OpenSearch request body."""
        text = query.query.strip()
        body: dict[str, Any] = {
            "query": self.build_query(query),
            "from": query.offset,
            "size": query.page_size,
            "track_total_hits": True,
        }

        if query.sort:
            body["sort"] = [{self._sort_field(s.field): {"order": s.order.value}} for s in query.sort]
        else:
            body["sort"] = [{"_score": {"order": "desc"}}, {DocumentField.CREATED_AT: {"order": "desc"}}]

        if query.highlight:
            body["highlight"] = {
                "pre_tags": [self._highlight.pre_tag],
                "post_tags": [self._highlight.post_tag],
                "fragment_size": self._highlight.fragment_size,
                "number_of_fragments": self._highlight.number_of_fragments,
                "fields": {field: {} for field in HIGHLIGHT_FIELDS},
            }

        if query.aggregations:
            body["aggs"] = {
                field.value: {"terms": {"field": field.value, "size": _AGGREGATION_SIZE}}
                for field in query.aggregations
            }

        if query.suggest and text:
            body["suggest"] = {
                "text": text,
                "title_suggest": {"term": {"field": DocumentField.TITLE}},
            }

        return body

    def build_query(self, query: SearchQuery) -> dict[str, Any]:
        must: list[dict[str, Any]] = []
        text = query.query.strip()
        if text:
            must.append(
                {
                    "multi_match": {
                        "query": text,
                        "fields": [f"{f}^{b}" if b > 1 else f for f, b in SEARCHABLE_FIELDS.items()],
                        "type": "best_fields",
                        "fuzziness": "AUTO",
                    }
                }
            )

        filters = self.build_filters(query.filters) if query.filters else []
        if not must and not filters:
            return {"match_all": {}}

        bool_query: dict[str, Any] = {"must": must or [{"match_all": {}}]}
        if filters:
            bool_query["filter"] = filters
        return {"bool": bool_query}

    @staticmethod
    def build_filters(filters: SearchFilters) -> list[dict[str, Any]]:
        """Build the conjunctive list of filter clauses."""
        clauses: list[dict[str, Any]] = []

        if filters.type:
            clauses.append({"terms": {DocumentField.TYPE: [t.value for t in filters.type]}})
        if filters.status:
            clauses.append({"terms": {DocumentField.STATUS: filters.status}})
        if filters.author is not None:
            clauses.append({"term": {DocumentField.AUTHOR: filters.author}})
        if filters.author_id is not None:
            clauses.append({"term": {DocumentField.AUTHOR_ID: filters.author_id}})
        if filters.category:
            clauses.append({"terms": {DocumentField.CATEGORY: filters.category}})
        if filters.tags:
            clauses.append({"terms": {DocumentField.TAGS: filters.tags}})

        if filters.date_range:
            rng: dict[str, str] = {}
            if filters.date_range.start:
                rng["gte"] = normalize_timestamp(filters.date_range.start).isoformat()
            if filters.date_range.end:
                rng["lte"] = normalize_timestamp(filters.date_range.end).isoformat()
            if rng:
                clauses.append({"range": {filters.date_range.field.value: rng}})

        return clauses

    @staticmethod
    def _sort_field(field: SortField) -> str:
        # Text fields sort on their keyword sub-field.
        return TITLE_KEYWORD_FIELD if field == SortField.TITLE else field.value

    # ── Encoding ─────────────────────────────────────────────────────────

    @staticmethod
    def _encode(document: SearchableDocument) -> dict[str, Any]:
        return document.model_dump(by_alias=True, mode="json")

    @staticmethod
    def _encode_partial(changes: Mapping[str, Any]) -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for field, value in index_fields(changes).items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            encoded[field] = value
        return encoded

    @staticmethod
    def _decode(source: dict[str, Any]) -> SearchableDocument:
        try:
            return SearchableDocument.model_validate(source)
        except ValidationError as e:
            raise QueryError(f"Malformed document in OpenSearch index: {e}") from e
