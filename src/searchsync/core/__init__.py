"""Core services — search facade, index synchronization engine and wiring."""

from searchsync.core.service import SearchService
from searchsync.core.sync import IndexSyncEngine, backoff_delay

__all__ = ["IndexSyncEngine", "SearchService", "backoff_delay"]
