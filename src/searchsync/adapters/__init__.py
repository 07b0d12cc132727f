"""Search adapter layer — Pluggable connectors for search backends.

Built-in adapters:
  - opensearch: OpenSearch v2+ / Elasticsearch-compatible clusters (``opensearch-py``)
  - meilisearch: MeiliSearch REST API (``httpx``)
  - memory: In-process document table for offline use and tests

Implement ``SearchAdapter`` to connect your own search backend.
"""
