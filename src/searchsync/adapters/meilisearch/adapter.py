"""MeiliSearch adapter — Instant, typo-tolerant search connector.

This adapter communicates with the MeiliSearch REST API using ``httpx``.

MeiliSearch applies every write asynchronously and answers with a task
handle.  The adapter polls ``/tasks/{uid}`` until the task succeeds or
fails, bounded by ``task_timeout``, so callers always see a completed write
or a ``TaskTimeoutError``.  Dates are stored as epoch milliseconds because
MeiliSearch range filters only work on numbers.

Usage::

    adapter = MeiliSearchAdapter(
        base_url="http://localhost:7700",
        api_key="your-master-key",
    )
    await adapter.connect()
    result = await adapter.search("documents", SearchQuery(query="quarterly report"))
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from searchsync.adapters.base.adapter import HighlightConfig, IndexSettings, SearchAdapter
from searchsync.adapters.base.exceptions import (
    AdapterError,
    ConnectionError,
    DocumentNotFoundError,
    IndexOperationError,
    QueryError,
    TaskTimeoutError,
)
from searchsync.models.document import (
    DATE_FIELDS,
    FILTERABLE_FIELDS,
    HIGHLIGHT_FIELDS,
    SEARCHABLE_FIELDS,
    SORTABLE_FIELDS,
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

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MILLISECOND = timedelta(milliseconds=1)
_AGGREGATION_SIZE = 20

# Chinese and English segmentation on the full-text attributes.
MIXED_SCRIPT_LOCALES: list[dict[str, Any]] = [
    {"attributePatterns": list(HIGHLIGHT_FIELDS), "locales": ["cmn", "eng"]},
]


def to_epoch_millis(value: datetime) -> int:
    return (normalize_timestamp(value) - _EPOCH) // _MILLISECOND


def from_epoch_millis(value: int | float) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(value))


def quote_filter_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MeiliTaskError(IndexOperationError):
    """A MeiliSearch task finished in the ``failed`` or ``canceled`` state."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class MeiliSearchAdapter(SearchAdapter):
    """Search adapter for MeiliSearch.

    Communicates with MeiliSearch via its `REST API`_ over HTTP.

    .. _REST API: https://www.meilisearch.com/docs/reference/api/overview

    Args:
        base_url: MeiliSearch instance URL, e.g. ``"http://localhost:7700"``.
        api_key: Master key or API key, sent as a bearer token.
        timeout: HTTP request timeout in seconds.
        task_timeout: Maximum seconds to wait for an indexing task.
        task_poll_interval: Seconds between task status polls.
        index_prefix: Optional index name prefix.
        highlight: Highlight configuration.
        **kwargs: Extra keyword arguments forwarded to ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:7700",
        api_key: str | None = None,
        timeout: float = 30.0,
        task_timeout: float = 30.0,
        task_poll_interval: float = 0.1,
        index_prefix: str | None = None,
        highlight: HighlightConfig | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, highlight=highlight)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._task_timeout = task_timeout
        self._task_poll_interval = task_poll_interval
        self._extra_kwargs = kwargs
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "meilisearch"

    # ── Connection ───────────────────────────────────────────────────────

    def _create_client(self) -> httpx.AsyncClient:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            **self._extra_kwargs,
        )

    async def connect(self) -> None:
        """Create an ``httpx.AsyncClient`` and verify MeiliSearch is available."""
        if self._client is None:
            self._client = self._create_client()

        if not await self.ping():
            self._connected = False
            raise ConnectionError(f"Failed to connect to MeiliSearch at {self._base_url}")

        self._connected = True
        logger.info("Connected to MeiliSearch at %s", self._base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200 and resp.json().get("status") == "available"
        except Exception:
            logger.debug("MeiliSearch health probe failed", exc_info=True)
            return False

    # ── HTTP helpers ─────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls: type[AdapterError] = QueryError,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Returns ``None`` for a 404 when ``allow_404`` is set.
        """
        if not self._client:
            raise ConnectionError("MeiliSearch client not initialized.")

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ConnectionError(f"MeiliSearch request failed: {e}") from e

        if allow_404 and resp.status_code == 404:
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise error_cls(f"MeiliSearch {method} {path} failed: {self._error_message(resp)}") from e

        return resp.json() if resp.content else {}

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            return resp.json().get("message") or f"HTTP {resp.status_code}"
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"

    async def _submit(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a write request and block until its task completes."""
        response = await self._request(method, path, error_cls=IndexOperationError, **kwargs)
        task_uid = response.get("taskUid") if response else None
        if task_uid is not None:
            await self.wait_for_task(task_uid)
        return response or {}

    async def wait_for_task(self, task_uid: int) -> dict[str, Any]:
        """Poll a task until it reaches a terminal state.

        Raises:
            MeiliTaskError: If the task failed or was canceled.
            TaskTimeoutError: If the task is still running after ``task_timeout``.
        """
        deadline = time.monotonic() + self._task_timeout
        while True:
            task = await self._request("GET", f"/tasks/{task_uid}", error_cls=IndexOperationError)
            status = task.get("status")
            if status == "succeeded":
                return task
            if status in ("failed", "canceled"):
                error = task.get("error") or {}
                raise MeiliTaskError(
                    error.get("message") or f"MeiliSearch task {task_uid} {status}",
                    code=error.get("code"),
                )
            if time.monotonic() >= deadline:
                raise TaskTimeoutError(
                    f"MeiliSearch task {task_uid} did not finish within {self._task_timeout}s"
                )
            await asyncio.sleep(self._task_poll_interval)

    def _docs_path(self, index: str, document_id: str | None = None) -> str:
        path = f"/indexes/{self.index_name(index)}/documents"
        return f"{path}/{quote(document_id, safe='')}" if document_id is not None else path

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def create_index(self, settings: IndexSettings) -> None:
        name = self.index_name(settings.name)
        if await self.index_exists(settings.name):
            logger.info("Index %s already exists", name)
            return

        try:
            await self._submit("POST", "/indexes", json={"uid": name, "primaryKey": DocumentField.ID})
        except MeiliTaskError as e:
            if e.code != "index_already_exists":
                raise

        index_settings: dict[str, Any] = {
            "searchableAttributes": sorted(SEARCHABLE_FIELDS, key=lambda f: -SEARCHABLE_FIELDS[f]),
            "filterableAttributes": list(FILTERABLE_FIELDS),
            "sortableAttributes": list(SORTABLE_FIELDS),
            "typoTolerance": {
                "enabled": True,
                "minWordSizeForTypos": {"oneTypo": 4, "twoTypos": 8},
            },
            "localizedAttributes": MIXED_SCRIPT_LOCALES,
        }
        index_settings.update(settings.mappings or {})
        await self._submit("PATCH", f"/indexes/{name}/settings", json=index_settings)
        logger.info("Index %s created", name)

    async def delete_index(self, name: str) -> bool:
        full_name = self.index_name(name)
        response = await self._request(
            "DELETE", f"/indexes/{full_name}", error_cls=IndexOperationError, allow_404=True
        )
        if response is None:
            return False
        if response.get("taskUid") is not None:
            await self.wait_for_task(response["taskUid"])
        logger.info("Index %s deleted", full_name)
        return True

    async def index_exists(self, name: str) -> bool:
        response = await self._request(
            "GET", f"/indexes/{self.index_name(name)}", error_cls=IndexOperationError, allow_404=True
        )
        return response is not None

    # ── Documents ────────────────────────────────────────────────────────

    async def index_document(self, index: str, document: SearchableDocument) -> None:
        await self._submit("POST", self._docs_path(index), json=[self._encode(document)])

    async def bulk_index_documents(self, index: str, documents: Sequence[SearchableDocument]) -> BulkResult:
        if not documents:
            return BulkResult()

        try:
            await self._submit("POST", self._docs_path(index), json=[self._encode(d) for d in documents])
        except MeiliTaskError as e:
            # A failed task rejects the whole batch.
            logger.warning("MeiliSearch bulk task failed: %s", e)
            return BulkResult(failed=len(documents), errors={d.id: str(e) for d in documents})
        return BulkResult(success=len(documents))

    async def update_document(self, index: str, document_id: str, changes: Mapping[str, Any]) -> None:
        try:
            partial = self._encode_partial(changes)
        except ValueError as e:
            raise IndexOperationError(f"Invalid update for document '{document_id}': {e}") from e

        existing = await self._request("GET", self._docs_path(index, document_id), allow_404=True)
        if existing is None:
            raise DocumentNotFoundError(f"Document '{document_id}' not found.")

        # PUT merges the given fields into the stored document.
        await self._submit("PUT", self._docs_path(index), json=[{DocumentField.ID: document_id, **partial}])

    async def delete_document(self, index: str, document_id: str) -> None:
        await self._submit("DELETE", self._docs_path(index, document_id))

    async def get_document(self, index: str, document_id: str) -> SearchableDocument | None:
        response = await self._request("GET", self._docs_path(index, document_id), allow_404=True)
        return self._decode(response) if response is not None else None

    # ── Queries ──────────────────────────────────────────────────────────

    async def search(self, index: str, query: SearchQuery) -> SearchResult:
        """Execute a search query against ``/indexes/{index}/search``."""
        payload = self.build_search_payload(query)

        start = time.monotonic()
        data = await self._request("POST", f"/indexes/{self.index_name(index)}/search", json=payload)
        took_ms = int((time.monotonic() - start) * 1000)

        raw_hits = data.get("hits", [])
        hits = [
            SearchHit(
                document=self._decode(hit),
                score=hit.get("_rankingScore", 0.0),
                highlights=self._extract_highlights(hit) if query.highlight else None,
            )
            for hit in raw_hits
        ]

        aggregations = None
        if data.get("facetDistribution"):
            aggregations = {
                field: [
                    AggregationBucket(key=k, count=c)
                    for k, c in sorted(values.items(), key=lambda kv: (-kv[1], kv[0]))[:_AGGREGATION_SIZE]
                ]
                for field, values in data["facetDistribution"].items()
            }

        suggestions = None
        text = query.query.strip()
        if query.suggest and text:
            suggestions = [s.text for s in await self.suggest(index, text)]

        total = data.get("estimatedTotalHits", data.get("totalHits", len(raw_hits)))
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
        data = await self._request(
            "POST",
            f"/indexes/{self.index_name(index)}/search",
            json={
                "q": prefix,
                "limit": size,
                "attributesToRetrieve": [DocumentField.TITLE],
                "attributesToSearchOn": [DocumentField.TITLE],
                "showRankingScore": True,
            },
        )
        seen: set[str] = set()
        suggestions: list[SearchSuggestion] = []
        for hit in data.get("hits", []):
            title = hit.get(DocumentField.TITLE)
            if not title or title in seen:
                continue
            seen.add(title)
            suggestions.append(SearchSuggestion(text=title, score=hit.get("_rankingScore", 0.0)))
        return suggestions

    async def count(self, index: str, filters: SearchFilters | None = None) -> int:
        payload: dict[str, Any] = {"q": "", "limit": 0}
        filter_expr = self.build_filter(filters) if filters else ""
        if filter_expr:
            payload["filter"] = filter_expr
        data = await self._request("POST", f"/indexes/{self.index_name(index)}/search", json=payload)
        return int(data.get("estimatedTotalHits", data.get("totalHits", 0)))

    # ── Query building ───────────────────────────────────────────────────

    def build_search_payload(self, query: SearchQuery) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "q": query.query.strip(),
            "limit": query.page_size,
            "offset": query.offset,
            "showRankingScore": True,
        }

        if query.highlight:
            payload.update(
                {
                    "attributesToHighlight": list(HIGHLIGHT_FIELDS),
                    "highlightPreTag": self._highlight.pre_tag,
                    "highlightPostTag": self._highlight.post_tag,
                    "attributesToCrop": [DocumentField.CONTENT, DocumentField.DESCRIPTION],
                    # cropLength counts words, fragment_size counts characters.
                    "cropLength": max(1, self._highlight.fragment_size // 6),
                }
            )

        if query.filters:
            filter_expr = self.build_filter(query.filters)
            if filter_expr:
                payload["filter"] = filter_expr

        # Relevance is MeiliSearch's implicit ordering, so "_score" is dropped.
        sort = [f"{s.field.value}:{s.order.value}" for s in query.sort if s.field != SortField.SCORE]
        if sort:
            payload["sort"] = sort

        if query.aggregations:
            payload["facets"] = [f.value for f in query.aggregations]

        return payload

    @staticmethod
    def build_filter(filters: SearchFilters) -> str:
        """Build a MeiliSearch filter expression joined with ``AND``."""
        conditions: list[str] = []

        def _in(field: str, values: Sequence[str]) -> None:
            conditions.append(f"{field} IN [{', '.join(quote_filter_value(v) for v in values)}]")

        if filters.type:
            _in(DocumentField.TYPE, [t.value for t in filters.type])
        if filters.status:
            _in(DocumentField.STATUS, filters.status)
        if filters.author is not None:
            conditions.append(f"{DocumentField.AUTHOR} = {quote_filter_value(filters.author)}")
        if filters.author_id is not None:
            conditions.append(f"{DocumentField.AUTHOR_ID} = {quote_filter_value(filters.author_id)}")
        if filters.category:
            _in(DocumentField.CATEGORY, filters.category)
        if filters.tags:
            tag_conditions = " OR ".join(f"{DocumentField.TAGS} = {quote_filter_value(t)}" for t in filters.tags)
            conditions.append(f"({tag_conditions})")

        if filters.date_range:
            field = filters.date_range.field.value
            if filters.date_range.start:
                conditions.append(f"{field} >= {to_epoch_millis(filters.date_range.start)}")
            if filters.date_range.end:
                conditions.append(f"{field} <= {to_epoch_millis(filters.date_range.end)}")

        return " AND ".join(conditions)

    def _extract_highlights(self, hit: dict[str, Any]) -> dict[str, list[str]] | None:
        formatted = hit.get("_formatted") or {}
        highlights = {
            field: [value]
            for field in HIGHLIGHT_FIELDS
            if isinstance(value := formatted.get(field), str) and self._highlight.pre_tag in value
        }
        return highlights or None

    # ── Encoding ─────────────────────────────────────────────────────────

    @staticmethod
    def _encode(document: SearchableDocument) -> dict[str, Any]:
        data = document.model_dump(by_alias=True, mode="json")
        data[DocumentField.CREATED_AT] = to_epoch_millis(document.created_at)
        data[DocumentField.UPDATED_AT] = to_epoch_millis(document.updated_at) if document.updated_at else None
        return data

    @staticmethod
    def _encode_partial(changes: Mapping[str, Any]) -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for field, value in index_fields(changes).items():
            if isinstance(value, datetime):
                value = to_epoch_millis(value)
            elif isinstance(value, Enum):
                value = value.value
            encoded[field] = value
        return encoded

    @staticmethod
    def _decode(source: dict[str, Any]) -> SearchableDocument:
        data = {k: v for k, v in source.items() if not k.startswith("_")}
        for field in DATE_FIELDS:
            if isinstance(data.get(field), int | float):
                data[field] = from_epoch_millis(data[field])
        try:
            return SearchableDocument.model_validate(data)
        except ValidationError as e:
            raise QueryError(f"Malformed document in MeiliSearch index: {e}") from e
