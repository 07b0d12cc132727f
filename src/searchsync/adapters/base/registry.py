"""Adapter Registry — Maps provider names to adapter classes.

Built-in adapters are registered lazily by module path so that a backend's
client library is only imported when that backend is actually selected.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any

from searchsync.adapters.base.adapter import SearchAdapter

logger = logging.getLogger(__name__)

# Maps provider names to (module_path, class_name) for lazy import
BUILTIN_ADAPTERS: dict[str, tuple[str, str]] = {
    "opensearch": ("searchsync.adapters.opensearch.adapter", "OpenSearchAdapter"),
    "meilisearch": ("searchsync.adapters.meilisearch.adapter", "MeiliSearchAdapter"),
    "memory": ("searchsync.adapters.memory.adapter", "MemorySearchAdapter"),
}


class AdapterNotFoundError(Exception):
    """Raised when a requested adapter is not registered."""


class AdapterRegistry:
    """Registry of adapter classes keyed by provider name.

    Example:
        >>> registry = AdapterRegistry()
        >>> registry.register("custom", CustomAdapter)
        >>> adapter = registry.create("meilisearch", base_url="http://localhost:7700")
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[SearchAdapter]] = {}

    def register(self, name: str, adapter_class: type[SearchAdapter]) -> None:
        """Register an adapter class under ``name``."""
        if name in self._classes:
            logger.warning("Overwriting existing adapter registration: %s", name)
        self._classes[name] = adapter_class
        logger.debug("Registered adapter: %s", name)

    def get_class(self, name: str) -> type[SearchAdapter]:
        """Resolve an adapter class, importing built-ins on first use.

        Raises:
            AdapterNotFoundError: If ``name`` is neither registered nor built in.
        """
        if name in self._classes:
            return self._classes[name]

        entry = BUILTIN_ADAPTERS.get(name)
        if entry is None:
            raise AdapterNotFoundError(
                f"No adapter registered with name '{name}'. "
                f"Available adapters: {self.registered_adapters}"
            )

        module_path, class_name = entry
        module = importlib.import_module(module_path)
        adapter_class: type[SearchAdapter] = getattr(module, class_name)
        self._classes[name] = adapter_class
        return adapter_class

    def create(self, name: str, **kwargs: Any) -> SearchAdapter:
        """Instantiate the adapter registered under ``name``."""
        adapter = self.get_class(name)(**kwargs)
        logger.info("Created adapter: %s", name)
        return adapter

    @property
    def registered_adapters(self) -> list[str]:
        """All adapter names, built-in and custom."""
        return sorted(set(self._classes) | set(BUILTIN_ADAPTERS))
