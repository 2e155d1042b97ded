"""
Website Ingestion Pipeline

Crawls the public site into the ``website_content`` table:

    sitemap (or fallback URLs) -> fetch page -> extract text
    -> fixed-window chunks -> embed -> store

A run never aborts because of a single page or chunk. Failures are counted
in the returned stats and logged; only a failure to clear existing content
(before any page is touched) propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..db.knowledge_store import KnowledgeStore
from ..embeddings.embedder import Embedder
from .chunker import build_page_chunks
from .extract import extract_page, fetch_page
from .sitemap import fetch_sitemap_urls

logger = logging.getLogger("knowledge.ingest")


@dataclass
class IngestStats:
    urls_found: int = 0
    urls_processed: int = 0
    chunks_created: int = 0
    errors: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class WebsiteIngestor:
    """
    Runs website ingestion against an injected store and embedder.

    Pages are processed with at most ``settings.ingest_concurrency`` in
    flight. Each page task owns its own error handling, so one failing page
    cannot cancel its siblings.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Parameters
        ----------
        store : KnowledgeStore
            Destination of the crawled chunks.

        embedder : Embedder
            Must use the same model as query embedding.

        client : Optional[httpx.AsyncClient]
            Shared HTTP client for sitemap and page fetches. When omitted a
            client is created for the duration of each run.

        settings : Optional[Settings]
            Crawl configuration. Defaults to the application settings.
        """
        self.store = store
        self.embedder = embedder
        self.settings = settings or default_settings
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        sitemap_url: Optional[str] = None,
        clear_existing: bool = False,
        cancel: Optional[asyncio.Event] = None,
    ) -> IngestStats:
        """
        Crawl the site and return counters for the run.

        Parameters
        ----------
        sitemap_url : Optional[str]
            Overrides ``settings.sitemap_url``.

        clear_existing : bool
            Truncate ``website_content`` before crawling.

        cancel : Optional[asyncio.Event]
            When set, no further pages are fetched; pages already in flight
            finish and the stats are marked cancelled.

        Raises
        ------
        StorageError
            If ``clear_existing`` is requested and the truncate fails.
        """
        if clear_existing:
            logger.info("Clearing existing website content")
            await self.store.clear_site_content()

        if self._client is not None:
            return await self._crawl(self._client, sitemap_url, cancel)

        async with httpx.AsyncClient(
            timeout=self.settings.fetch_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.settings.crawler_user_agent},
        ) as client:
            return await self._crawl(client, sitemap_url, cancel)

    async def rebuild(self, cancel: Optional[asyncio.Event] = None) -> IngestStats:
        """Clear crawled content and ingest the whole site again."""
        return await self.run(clear_existing=True, cancel=cancel)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _crawl(
        self,
        client: httpx.AsyncClient,
        sitemap_url: Optional[str],
        cancel: Optional[asyncio.Event],
    ) -> IngestStats:
        stats = IngestStats()

        urls = await fetch_sitemap_urls(
            client,
            sitemap_url or self.settings.sitemap_url,
            self.settings.sitemap_filter_pattern,
            self.settings.fallback_urls,
        )
        stats.urls_found = len(urls)
        logger.info("Ingesting %d URLs", len(urls))

        semaphore = asyncio.Semaphore(max(1, self.settings.ingest_concurrency))

        async def worker(url: str) -> None:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    stats.cancelled = True
                    return
                await self._ingest_page(client, url, stats)

        await asyncio.gather(*(worker(url) for url in urls))

        logger.info(
            "Ingestion finished: found=%d processed=%d chunks=%d errors=%d cancelled=%s",
            stats.urls_found,
            stats.urls_processed,
            stats.chunks_created,
            stats.errors,
            stats.cancelled,
        )
        return stats

    async def _ingest_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        stats: IngestStats,
    ) -> None:
        try:
            html = await fetch_page(client, url)
            page = extract_page(url, html)
        except Exception as exc:
            logger.error("Failed to fetch %s: %s", url, exc)
            stats.errors += 1
            return

        chunks = build_page_chunks(
            page,
            chunk_size=self.settings.chunk_size,
            overlap=self.settings.chunk_overlap,
        )
        if not chunks:
            logger.warning("No text content found on %s", url)

        for chunk in chunks:
            try:
                embedding = await self.embedder.embed_one(chunk.content)
                await self.store.add_site_chunk(chunk.content, url, embedding, chunk.metadata)
                stats.chunks_created += 1
            except Exception as exc:
                logger.error(
                    "Failed to store chunk %s of %s: %s",
                    chunk.metadata.get("chunkIndex"),
                    url,
                    exc,
                )
                stats.errors += 1

        stats.urls_processed += 1
        logger.info("Processed %s (%d chunks)", url, len(chunks))
