"""
Keyword Fallback

Semantic search misses queries built around literal codes or identifiers
(promo codes, reference numbers) that embed poorly. When the semantic merge
comes back empty, this module recovers those cases with substring matching
over curated content.

Matches get a fixed high placeholder similarity so downstream consumers
treat them as exact hits.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List

from ..db.knowledge_store import KnowledgeStore
from .models import KnowledgeSearchResult

logger = logging.getLogger("knowledge.fallback")

MARKER_TOKEN_PATTERN = re.compile(r"[A-Z0-9_]{8,}")
DEDUP_PREFIX_CHARS = 80


def extract_marker_tokens(query: str) -> List[str]:
    """
    Return uppercase/digit/underscore runs of at least 8 characters.
    """
    return MARKER_TOKEN_PATTERN.findall(query)


def fallback_terms(query: str, max_terms: int = 3) -> List[str]:
    """
    Choose the substring search terms for a query.

    Marker tokens are preferred; without any, the whole trimmed query is the
    only term.
    """
    markers = extract_marker_tokens(query)
    if markers:
        return markers[:max_terms]
    trimmed = query.strip()
    return [trimmed] if trimmed else []


def dedup_key(result: KnowledgeSearchResult) -> str:
    return f"{result.url or ''}::{result.content[:DEDUP_PREFIX_CHARS]}"


def dedupe_results(results: List[KnowledgeSearchResult]) -> List[KnowledgeSearchResult]:
    """
    Drop repeats by source URL plus content prefix; first occurrence wins.
    """
    seen: Dict[str, KnowledgeSearchResult] = {}
    for result in results:
        key = dedup_key(result)
        if key not in seen:
            seen[key] = result
    return list(seen.values())


class KeywordFallback:
    """
    Substring retrieval over curated content.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        max_terms: int = 3,
        rows_per_term: int = 5,
        similarity: float = 0.99,
        limit: int = 5,
    ) -> None:
        self._store = store
        self.max_terms = max_terms
        self.rows_per_term = rows_per_term
        self.similarity = similarity
        self.limit = limit

    async def search(self, query: str) -> List[KnowledgeSearchResult]:
        """
        Run the fallback for ``query``.

        Raises
        ------
        StorageError
            If any term's lookup fails.
        """
        terms = fallback_terms(query, self.max_terms)
        logger.debug("Keyword fallback terms: %s", terms)

        rows: List[KnowledgeSearchResult] = []
        for term in terms:
            rows.extend(await self._store.keyword_search(term, limit=self.rows_per_term))

        deduped = dedupe_results(rows)[: self.limit]
        logger.debug(
            "Keyword fallback results: rows=%d deduped=%d", len(rows), len(deduped)
        )
        return [r.with_similarity(self.similarity) for r in deduped]
