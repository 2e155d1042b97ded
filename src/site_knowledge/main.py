"""
Knowledge Service Application Entry Point

This module defines the FastAPI application instance, wires the retrieval
core and ingestion services, registers all routers and configures global
exception handling.

Design Goals
------------
- Deterministic startup
- Explicit dependency initialization order
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI

from .config import Settings, settings
from .core.errors import (
    DocumentParseError,
    document_parse_error_handler,
    unhandled_exception_handler,
)
from .core.logging import configure_logging
from .db.knowledge_store import KnowledgeStore
from .db.session import create_session_factory, init_db
from .embeddings.cache import EmbeddingCache
from .embeddings.embedder import Embedder
from .ingestion.pipeline import WebsiteIngestor
from .ingestion.uploads import CuratedUploader
from .retrieval.events import RetrievalEventLogger
from .retrieval.fallback import KeywordFallback
from .retrieval.service import KnowledgeService, RetrievalOptions

from .api import (
    health_routes,
    search_routes,
    knowledge_routes,
    insights_routes,
)


logger = logging.getLogger("knowledge.app")


# ---------------------------------------------------------------------
# Service Wiring
# ---------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build every long-lived collaborator once and release them at shutdown.

    Fails fast when the embedding API key is missing, so a misconfigured
    deployment never serves a request.
    """
    config: Settings = app.state.settings
    configure_logging(config.log_level)
    logger.info("Starting site-knowledge")

    api_key = config.openai_api_key.get_secret_value()
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")

    engine, session_factory = create_session_factory(config.database_url)
    await init_db(engine)

    embedding_client = httpx.AsyncClient(timeout=config.embedding_timeout)
    crawl_client = httpx.AsyncClient(
        timeout=config.fetch_timeout,
        follow_redirects=True,
        headers={"User-Agent": config.crawler_user_agent},
    )

    embedder = Embedder(
        api_key=api_key,
        model=config.embedding_model,
        base_url=config.embedding_api_url,
        dimensions=config.embedding_dimensions,
        client=embedding_client,
    )
    store = KnowledgeStore(session_factory)

    app.state.session_factory = session_factory
    app.state.knowledge_store = store
    app.state.knowledge_service = KnowledgeService(
        embeddings=EmbeddingCache(
            embedder,
            ttl_seconds=config.embedding_cache_ttl_seconds,
            max_entries=config.embedding_cache_max_entries,
        ),
        store=store,
        fallback=KeywordFallback(
            store,
            max_terms=config.fallback_max_terms,
            rows_per_term=config.fallback_rows_per_term,
            similarity=config.fallback_similarity,
            limit=config.result_limit,
        ),
        events=RetrievalEventLogger(session_factory),
        options=RetrievalOptions.from_settings(config),
    )
    app.state.uploader = CuratedUploader(
        store,
        embedder,
        chunk_size=config.curated_chunk_size,
        default_url=config.curated_default_url,
        max_upload_bytes=config.max_upload_bytes,
    )
    app.state.ingestor = WebsiteIngestor(store, embedder, client=crawl_client, settings=config)

    logger.info("Configuration validated successfully")
    try:
        yield
    finally:
        logger.info("Shutting down site-knowledge")
        await crawl_client.aclose()
        await embedding_client.aclose()
        await engine.dispose()


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(config: Settings = settings) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests build an app without entering the lifespan and provide services
    through ``app.dependency_overrides``.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="site-knowledge",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.ingest_cancel = asyncio.Event()

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(DocumentParseError, document_parse_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(search_routes.router)
    app.include_router(knowledge_routes.router)
    app.include_router(insights_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
