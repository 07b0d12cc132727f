"""Wiring — Build adapters, the search service and the sync engine from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from searchsync.adapters.base.adapter import HighlightConfig, SearchAdapter
from searchsync.adapters.base.registry import AdapterRegistry
from searchsync.core.service import SearchService
from searchsync.core.sync import DocumentLoader, IndexSyncEngine

if TYPE_CHECKING:
    from searchsync.config.settings import SearchSettings, Settings

logger = logging.getLogger(__name__)


def adapter_kwargs(settings: SearchSettings) -> dict[str, Any]:
    """Translate search settings into constructor arguments for the configured provider.

    Different adapters expect different constructor parameter names.
    """
    kwargs: dict[str, Any] = {
        "index_prefix": settings.index_prefix,
        "highlight": HighlightConfig(**settings.highlight.model_dump()),
    }

    if settings.provider == "opensearch":
        kwargs.update(
            hosts=[settings.base_url],
            username=settings.username,
            password=settings.password,
            api_key=settings.api_key,
            verify_certs=settings.verify_certs,
            timeout=settings.timeout,
            refresh=settings.refresh,
        )
    elif settings.provider == "meilisearch":
        kwargs.update(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout=settings.timeout,
            task_timeout=settings.task_timeout,
            task_poll_interval=settings.task_poll_interval,
        )
    return kwargs


def create_adapter(settings: SearchSettings, registry: AdapterRegistry | None = None) -> SearchAdapter:
    registry = registry or AdapterRegistry()
    adapter = registry.create(settings.provider, **adapter_kwargs(settings))
    return adapter


def create_search_service(settings: Settings, registry: AdapterRegistry | None = None) -> SearchService:
    return SearchService(create_adapter(settings.search, registry), index_name=settings.search.index_name)


def create_sync_engine(
    settings: Settings,
    service: SearchService,
    document_loader: DocumentLoader | None = None,
) -> IndexSyncEngine:
    return IndexSyncEngine(service, settings.sync, document_loader=document_loader)
