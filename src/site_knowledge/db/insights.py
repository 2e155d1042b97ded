"""
Retrieval Insights

Aggregations over ``knowledge_events`` for the admin insights endpoints:
hit ratio, most-cited sources and chunks, unanswered questions and daily
trends. All windows are "the last ``days`` days" relative to now (UTC).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import KnowledgeEvent


def _round(value: Optional[float], digits: int = 3) -> float:
    return round(float(value), digits) if value else 0.0


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


class RetrievalInsights:
    """
    Read-only analytics queries bound to one session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _since(days: int) -> datetime:
        # created_at is stored as naive UTC
        return datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)

    async def hit_ratio(self, days: int = 30) -> Dict[str, Any]:
        """
        Total, hit and miss event counts with the hit percentage (one decimal).
        """
        stmt = select(
            func.count(KnowledgeEvent.id).label("total"),
            func.count(KnowledgeEvent.id).filter(KnowledgeEvent.hit.is_(True)).label("hits"),
        ).where(KnowledgeEvent.created_at >= self._since(days))

        row = (await self.session.execute(stmt)).one()
        total = row.total or 0
        hits = row.hits or 0
        ratio = (hits / total) * 100 if total else 0.0
        return {
            "total": total,
            "hits": hits,
            "misses": total - hits,
            "ratio": round(ratio, 1),
        }

    async def top_sources(self, days: int = 30, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Sources ranked by hit count, each with the latest query that cited it.
        """
        stmt = (
            select(
                KnowledgeEvent.source_id,
                KnowledgeEvent.source_type,
                func.count(KnowledgeEvent.id).label("hits"),
                func.avg(KnowledgeEvent.relevance).label("avg_relevance"),
                func.max(KnowledgeEvent.created_at).label("last_hit"),
            )
            .where(KnowledgeEvent.hit.is_(True))
            .where(KnowledgeEvent.created_at >= self._since(days))
            .group_by(KnowledgeEvent.source_id, KnowledgeEvent.source_type)
            .order_by(desc("hits"))
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()

        items = []
        for row in rows:
            example = await self.session.execute(
                select(KnowledgeEvent.query)
                .where(KnowledgeEvent.source_id == row.source_id)
                .where(KnowledgeEvent.hit.is_(True))
                .order_by(KnowledgeEvent.created_at.desc())
                .limit(1)
            )
            items.append(
                {
                    "source_id": row.source_id or "",
                    "source_type": row.source_type or "",
                    "hits": row.hits,
                    "avg_relevance": _round(row.avg_relevance),
                    "example_query": example.scalar() or "",
                    "last_hit": _iso(row.last_hit),
                }
            )
        return items

    async def top_chunks(self, days: int = 30, limit: int = 50) -> List[Dict[str, Any]]:
        stmt = (
            select(
                KnowledgeEvent.chunk_id,
                KnowledgeEvent.source_id,
                KnowledgeEvent.source_type,
                func.count(KnowledgeEvent.id).label("hits"),
                func.avg(KnowledgeEvent.relevance).label("avg_relevance"),
            )
            .where(KnowledgeEvent.hit.is_(True))
            .where(KnowledgeEvent.chunk_id.is_not(None))
            .where(KnowledgeEvent.created_at >= self._since(days))
            .group_by(
                KnowledgeEvent.chunk_id,
                KnowledgeEvent.source_id,
                KnowledgeEvent.source_type,
            )
            .order_by(desc("hits"))
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            {
                "chunk_id": row.chunk_id or "",
                "source_id": row.source_id or "",
                "source_type": row.source_type or "",
                "hits": row.hits,
                "avg_relevance": _round(row.avg_relevance),
            }
            for row in rows
        ]

    async def missing_knowledge(
        self,
        days: int = 30,
        limit: int = 50,
        include_raw: bool = False,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Queries that found nothing, grouped by exact text, most frequent first.

        Returns
        -------
        dict
            ``groups`` (topic/count/examples) and, when ``include_raw`` is set,
            ``raw`` (query/date of the most recent ask).
        """
        stmt = (
            select(
                KnowledgeEvent.query,
                func.count(KnowledgeEvent.id).label("count"),
                func.max(KnowledgeEvent.created_at).label("last_asked"),
            )
            .where(KnowledgeEvent.hit.is_(False))
            .where(KnowledgeEvent.created_at >= self._since(days))
            .group_by(KnowledgeEvent.query)
            .order_by(desc("count"))
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()

        groups = [
            {"topic": row.query, "count": row.count, "examples": [row.query]}
            for row in rows
        ]
        raw = (
            [
                {
                    "query": row.query,
                    "date": row.last_asked.date().isoformat() if row.last_asked else "",
                }
                for row in rows
            ]
            if include_raw
            else []
        )
        return {"groups": groups, "raw": raw}

    async def trends(self, days: int = 30) -> List[Dict[str, Any]]:
        """
        Per-day totals, hits, misses and average relevance of hits.
        """
        day = func.date(KnowledgeEvent.created_at).label("day")
        stmt = (
            select(
                day,
                func.count(KnowledgeEvent.id).label("total_queries"),
                func.sum(case((KnowledgeEvent.hit.is_(True), 1), else_=0)).label("hits"),
                func.sum(case((KnowledgeEvent.hit.is_(False), 1), else_=0)).label("misses"),
                func.avg(
                    case((KnowledgeEvent.hit.is_(True), KnowledgeEvent.relevance), else_=None)
                ).label("avg_score"),
            )
            .where(KnowledgeEvent.created_at >= self._since(days))
            .group_by(day)
            .order_by(day)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            {
                "date": str(row.day),
                "total_queries": row.total_queries,
                "hits": int(row.hits or 0),
                "misses": int(row.misses or 0),
                "avg_score": _round(row.avg_score),
            }
            for row in rows
        ]
