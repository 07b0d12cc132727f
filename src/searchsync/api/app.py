"""FastAPI application factory and lifecycle management."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from searchsync import __version__
from searchsync.adapters.base.exceptions import AdapterError
from searchsync.api.deps import set_search_service, set_sync_engine
from searchsync.api.v1.router import router as v1_router
from searchsync.config.settings import Settings
from searchsync.core.factory import create_search_service, create_sync_engine
from searchsync.observability.logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "searchsync-config.yaml"


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from environment.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        # The CLI passes --config through the environment; otherwise auto-detect
        yaml_path = Path(os.environ.get("SEARCHSYNC_CONFIG_FILE", DEFAULT_CONFIG_FILE))
        if yaml_path.exists():
            logger.info("Loading configuration from %s", yaml_path)
            settings = Settings.from_yaml(yaml_path)
        else:
            settings = Settings()

    setup_logging(settings.observability)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifecycle (startup/shutdown)."""
        logger.info("Starting SearchSync v%s", __version__)

        service = create_search_service(settings)
        try:
            await service.initialize()
        except AdapterError as e:
            # Serve anyway: /health reports the outage and the index is created on first use.
            logger.error(
                "Search backend '%s' unavailable at startup, index setup deferred: %s", settings.search.provider, e
            )

        engine = create_sync_engine(settings, service)
        if not engine.realtime:
            engine.start()

        set_search_service(service)
        set_sync_engine(engine)

        app.state.settings = settings
        app.state.search_service = service
        app.state.sync_engine = engine

        logger.info("SearchSync is ready to serve requests on port %d", settings.server.port)
        yield

        logger.info("Shutting down SearchSync...")
        await engine.stop(flush=True)
        await service.shutdown()
        set_sync_engine(None)
        set_search_service(None)
        logger.info("SearchSync shutdown complete")

    app = FastAPI(
        title="SearchSync",
        description=(
            "Uniform full-text search over OpenSearch, Elasticsearch or MeiliSearch, "
            "with an index synchronization engine that keeps the index in line with your records."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/v1")

    return app
