"""
Query embedding cache.

A process-local, time-bounded map from normalized query text to its
embedding. It only saves provider calls: a miss falls through to the
embedder, so results never depend on what is cached.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from .embedder import Embedder

logger = logging.getLogger("knowledge.embedding_cache")


def cache_key(text: str) -> str:
    return text.strip().lower()


class EmbeddingCache:
    """
    TTL cache in front of an Embedder.

    Entries expire ``ttl_seconds`` after insertion. When the cache grows past
    ``max_entries`` the entry with the oldest insertion time is evicted.
    """

    def __init__(
        self,
        embedder: Embedder,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._embedder = embedder
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: Dict[str, Tuple[float, List[float]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, text: str) -> Optional[List[float]]:
        """
        Return the cached vector for ``text`` if present and fresh.
        """
        key = cache_key(text)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, vector = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return vector

    async def get_or_compute(self, text: str) -> List[float]:
        """
        Return the embedding for ``text``, calling the provider on a miss.

        Raises
        ------
        EmbeddingError
            Propagated from the embedder; failures are never cached.
        """
        key = cache_key(text)
        cached = self.get(text)
        if cached is not None:
            logger.debug("Using cached embedding for: %r", key[:50])
            return cached

        logger.debug("Generating new embedding for: %r", key[:50])
        vector = await self._embedder.embed_one(text.strip())
        self._entries[key] = (self._clock(), vector)
        self._evict()
        return vector

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        while len(self._entries) > self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
