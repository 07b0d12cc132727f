"""Tests for the adapter registry and settings-driven adapter construction."""

from __future__ import annotations

import pytest

from searchsync.adapters.base.registry import AdapterNotFoundError, AdapterRegistry
from searchsync.adapters.meilisearch.adapter import MeiliSearchAdapter
from searchsync.adapters.memory.adapter import MemorySearchAdapter
from searchsync.adapters.opensearch.adapter import OpenSearchAdapter
from searchsync.config.settings import SearchSettings
from searchsync.core.factory import adapter_kwargs, create_adapter


class CustomAdapter(MemorySearchAdapter):
    @property
    def name(self) -> str:
        return "custom"


class TestAdapterRegistry:
    def test_builtins_resolve_lazily(self) -> None:
        registry = AdapterRegistry()
        assert registry.get_class("meilisearch") is MeiliSearchAdapter
        assert registry.get_class("opensearch") is OpenSearchAdapter
        assert registry.get_class("memory") is MemorySearchAdapter

    def test_register_custom(self) -> None:
        registry = AdapterRegistry()
        registry.register("custom", CustomAdapter)
        adapter = registry.create("custom", index_prefix="x")
        assert adapter.name == "custom"
        assert adapter.index_name("docs") == "x_docs"
        assert "custom" in registry.registered_adapters

    def test_unknown_adapter(self) -> None:
        with pytest.raises(AdapterNotFoundError, match="solr"):
            AdapterRegistry().get_class("solr")

    def test_registered_adapters_lists_builtins(self) -> None:
        assert AdapterRegistry().registered_adapters == ["meilisearch", "memory", "opensearch"]


class TestCreateAdapter:
    def test_opensearch_from_settings(self) -> None:
        settings = SearchSettings(provider="opensearch", host="search.local", ssl=True, username="u", password="p")
        adapter = create_adapter(settings)
        assert isinstance(adapter, OpenSearchAdapter)
        assert adapter._hosts == ["https://search.local:9200"]
        assert adapter._username == "u"

    def test_meilisearch_from_settings(self) -> None:
        settings = SearchSettings(provider="meilisearch", api_key="master", index_prefix="prod", task_timeout=5)
        adapter = create_adapter(settings)
        assert isinstance(adapter, MeiliSearchAdapter)
        assert adapter._base_url == "http://localhost:7700"
        assert adapter._api_key == "master"
        assert adapter._task_timeout == 5
        assert adapter.index_name("docs") == "prod_docs"

    def test_memory_from_settings(self) -> None:
        adapter = create_adapter(SearchSettings(provider="memory"))
        assert isinstance(adapter, MemorySearchAdapter)

    def test_highlight_settings_forwarded(self) -> None:
        kwargs = adapter_kwargs(SearchSettings(provider="memory", highlight={"pre_tag": "<em>", "post_tag": "</em>"}))
        assert kwargs["highlight"].pre_tag == "<em>"
        assert kwargs["highlight"].fragment_size == 150

    def test_explicit_port_kept(self) -> None:
        assert SearchSettings(provider="meilisearch", port=7701).base_url == "http://localhost:7701"
