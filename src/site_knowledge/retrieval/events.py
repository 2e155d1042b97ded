"""
Retrieval Event Logger

Writes one row per retrieved chunk (or a single miss row) to
``knowledge_events`` so hit ratios, top sources and knowledge gaps can be
aggregated later.

Telemetry must never break retrieval: every failure is logged and
swallowed here.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import KnowledgeEvent
from .models import Correlation, KnowledgeSearchResult

logger = logging.getLogger("knowledge.events")

UNKNOWN_SOURCE = "unknown"


def build_event_rows(
    query: str,
    results: Sequence[KnowledgeSearchResult],
    correlation: Optional[Correlation] = None,
) -> List[KnowledgeEvent]:
    """
    Build the rows for one retrieval without touching the database.

    An empty result list yields exactly one miss row; otherwise there is one
    hit row per result and no miss row.
    """
    corr = correlation or Correlation()
    common = {
        "chat_id": corr.chat_id,
        "message_id": corr.message_id,
        "session_id": corr.session_id,
        "query": query,
    }

    if not results:
        return [KnowledgeEvent(**common, hit=False)]

    return [
        KnowledgeEvent(
            **common,
            source_type=result.source_type,
            source_id=result.url or UNKNOWN_SOURCE,
            chunk_id=result.chunk_id,
            relevance=float(result.similarity),
            hit=True,
        )
        for result in results
    ]


class RetrievalEventLogger:
    """
    Fire-and-forget writer for retrieval events.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log(
        self,
        query: str,
        results: Sequence[KnowledgeSearchResult],
        correlation: Optional[Correlation] = None,
    ) -> None:
        """
        Persist the outcome of one retrieval. Never raises.
        """
        try:
            rows = build_event_rows(query, results, correlation)
            async with self._session_factory() as session:
                session.add_all(rows)
                await session.commit()
        except Exception:
            logger.exception("Failed to log knowledge event for query %r", query[:80])
