"""Base adapter interface — Abstract classes for search backend connectors."""

from searchsync.adapters.base.adapter import HighlightConfig, IndexSettings, SearchAdapter
from searchsync.adapters.base.registry import AdapterRegistry

__all__ = ["AdapterRegistry", "HighlightConfig", "IndexSettings", "SearchAdapter"]
