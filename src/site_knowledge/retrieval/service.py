"""
Knowledge Retrieval Service

Entry point of the retrieval core. A query flows through:

    embedding cache -> similarity search (both tables, concurrently)
    -> merge/rank -> [keyword fallback if empty] -> event logger

``retrieve`` raises typed errors so internal callers and tests can tell
failure causes apart. ``search_knowledge`` is the public boundary: it never
raises and degrades to an empty list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import Settings
from ..core.errors import KnowledgeError
from ..db.knowledge_store import KnowledgeStore
from ..embeddings.cache import EmbeddingCache
from .events import RetrievalEventLogger
from .fallback import KeywordFallback
from .models import CURATED_TABLE, SITE_TABLE, Correlation, KnowledgeSearchResult
from .ranking import merge_results

logger = logging.getLogger("knowledge.search")


@dataclass(frozen=True)
class RetrievalOptions:
    """Tuning knobs for one service instance."""
    site_threshold: float = 0.5
    site_top_k: int = 5
    curated_threshold: float = 0.5
    curated_top_k: int = 5
    result_limit: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetrievalOptions":
        return cls(
            site_threshold=settings.site_similarity_threshold,
            site_top_k=settings.site_top_k,
            curated_threshold=settings.curated_similarity_threshold,
            curated_top_k=settings.curated_top_k,
            result_limit=settings.result_limit,
        )


class KnowledgeService:
    """
    Retrieval core owned by the application.

    All collaborators are injected; the service holds no global state.
    """

    def __init__(
        self,
        embeddings: EmbeddingCache,
        store: KnowledgeStore,
        fallback: KeywordFallback,
        events: RetrievalEventLogger,
        options: Optional[RetrievalOptions] = None,
    ) -> None:
        self.embeddings = embeddings
        self.store = store
        self.fallback = fallback
        self.events = events
        self.options = options or RetrievalOptions()

    async def semantic_search(self, query: str) -> List[KnowledgeSearchResult]:
        """
        Embed the query and return the merged top results of both tables.

        Raises
        ------
        EmbeddingError
            If no embedding could be obtained.
        StorageError
            If either table search fails.
        """
        vector = await self.embeddings.get_or_compute(query)

        site_results, curated_results = await asyncio.gather(
            self.store.search(
                SITE_TABLE,
                vector,
                threshold=self.options.site_threshold,
                limit=self.options.site_top_k,
            ),
            self.store.search(
                CURATED_TABLE,
                vector,
                threshold=self.options.curated_threshold,
                limit=self.options.curated_top_k,
            ),
        )

        logger.debug(
            "Semantic candidates: site=%d curated=%d",
            len(site_results),
            len(curated_results),
        )
        return merge_results(site_results, curated_results, self.options.result_limit)

    async def retrieve(self, query: str) -> List[KnowledgeSearchResult]:
        """
        Ranked results for ``query``, falling back to keyword matching when
        semantic search finds nothing.

        Raises
        ------
        EmbeddingError, StorageError
            Propagated unchanged.
        """
        trimmed = query.strip()
        if not trimmed:
            return []

        results = await self.semantic_search(trimmed)
        if results:
            return results

        return await self.fallback.search(trimmed)

    async def search_knowledge(
        self,
        query: str,
        correlation: Optional[Correlation] = None,
    ) -> List[KnowledgeSearchResult]:
        """
        Public retrieval entry point. Never raises.

        Completed retrievals are recorded as hit or miss events. Embedding or
        storage failures return an empty list and are not recorded, so miss
        analytics only count genuine knowledge gaps.
        """
        trimmed = query.strip()
        if not trimmed:
            return []

        try:
            results = await self.retrieve(trimmed)
        except KnowledgeError as exc:
            logger.warning(
                "Knowledge search degraded to no results (%s): %s",
                type(exc).__name__,
                exc,
            )
            return []
        except Exception:
            logger.exception("Unexpected error searching knowledge base")
            return []

        logger.info(
            "Knowledge search returned %d results for query: %r",
            len(results),
            trimmed[:50],
        )
        await self.events.log(trimmed, results, correlation)
        return results
