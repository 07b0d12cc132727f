"""Fixtures for API tests: a live app over the in-memory backend."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from searchsync.api.app import create_app
from searchsync.config.settings import Settings


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """Test client with the lifespan running (real-time sync)."""
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def queued_client() -> Iterator[TestClient]:
    """Test client whose sync engine queues events and drains rarely."""
    settings = Settings(
        _env_file=None,  # type: ignore[call-arg]
        search={"provider": "memory"},
        sync={"realtime": False, "drain_interval": 60},
    )
    with TestClient(create_app(settings)) as c:
        yield c
