"""
Knowledge Store

PostgreSQL + pgvector storage for the two knowledge tables:
- website_content: chunks written by the website crawler
- document_knowledge: curated chunks from admin text and file uploads

Similarity is computed in SQL as ``1 - (embedding <=> :query)`` using the
pgvector comparator, with the query vector bound as a parameter.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StorageError
from ..retrieval.models import (
    CURATED_TABLE,
    SITE_TABLE,
    KnowledgeSearchResult,
    SourceTable,
    build_result,
    decode_metadata,
)
from .models import ContentTable, CuratedContent, SiteContent

logger = logging.getLogger("knowledge.store")

TABLES: Dict[SourceTable, ContentTable] = {
    SITE_TABLE: SiteContent,
    CURATED_TABLE: CuratedContent,
}


class KnowledgeStore:
    """
    Read/write access to both knowledge tables.

    Every operation opens its own session from the injected factory, so
    independent reads (the site and curated searches of one query) can run
    concurrently. All database failures are re-raised as StorageError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker[AsyncSession]
            Factory producing sessions bound to the application engine.
        """
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    async def search(
        self,
        table: SourceTable,
        query_embedding: Sequence[float],
        threshold: float = 0.5,
        limit: int = 5,
    ) -> List[KnowledgeSearchResult]:
        """
        Return the chunks of one table most similar to the query vector.

        Parameters
        ----------
        table : SourceTable
            Which knowledge table to search.
        query_embedding : Sequence[float]
            Query vector, same dimensionality as stored embeddings.
        threshold : float
            Only chunks with similarity strictly greater than this are returned.
        limit : int
            Maximum number of results.

        Returns
        -------
        List[KnowledgeSearchResult]
            Ordered by similarity, highest first.
        """
        model = TABLES[table]
        cosine_distance = model.embedding.cosine_distance(list(query_embedding))
        similarity = (1 - cosine_distance).label("similarity")

        stmt = (
            select(
                model.id,
                model.content,
                model.url,
                model.metadata_,
                similarity,
            )
            .where(model.embedding.is_not(None))
            .where(similarity > threshold)
            .order_by(cosine_distance)
            .limit(limit)
        )

        rows = await self._fetch(stmt, f"similarity search on {table}")
        return _rows_to_results(table, rows, threshold)

    async def keyword_search(self, term: str, limit: int = 5) -> List[KnowledgeSearchResult]:
        """
        Case-insensitive substring search over curated content, newest first.

        LIKE wildcards in ``term`` are matched literally. Returned results
        carry similarity 0.0; the caller assigns the fallback score.
        """
        stmt = (
            select(
                CuratedContent.id,
                CuratedContent.content,
                CuratedContent.url,
                CuratedContent.metadata_,
            )
            .where(CuratedContent.content.icontains(term, autoescape=True))
            .order_by(CuratedContent.created_at.desc(), CuratedContent.id.desc())
            .limit(limit)
        )

        rows = await self._fetch(stmt, "keyword search")
        return [
            build_result(CURATED_TABLE, row.id, row.content, row.url, row.metadata_, 0.0)
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    async def add_site_chunk(
        self,
        content: str,
        url: Optional[str],
        embedding: Sequence[float],
        metadata: Dict[str, Any],
    ) -> int:
        """
        Insert one crawled chunk and return its id.
        """
        return await self._insert(SiteContent, content, url, embedding, metadata)

    async def add_curated_chunk(
        self,
        content: str,
        url: Optional[str],
        embedding: Optional[Sequence[float]],
        metadata: Dict[str, Any],
    ) -> int:
        """
        Insert one curated chunk and return its id.
        """
        return await self._insert(CuratedContent, content, url, embedding, metadata)

    async def clear_site_content(self) -> None:
        """
        Remove every crawled chunk.

        A single TRUNCATE keeps the window in which readers see a partially
        cleared table to one statement.
        """
        try:
            async with self._session_factory() as session:
                await session.execute(text(f"TRUNCATE TABLE {SiteContent.__tablename__}"))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to clear website content: %s", exc)
            raise StorageError("Failed to clear website content") from exc
        logger.info("Website content cleared")

    # ------------------------------------------------------------------
    # Curated administration
    # ------------------------------------------------------------------

    async def list_curated(
        self,
        query: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """
        Return curated rows, newest first, optionally filtered by substring.
        """
        stmt = select(
            CuratedContent.id,
            CuratedContent.content,
            CuratedContent.url,
            CuratedContent.metadata_,
            CuratedContent.created_at,
        )
        if query and query.strip():
            stmt = stmt.where(CuratedContent.content.icontains(query.strip(), autoescape=True))
        stmt = stmt.order_by(CuratedContent.created_at.desc()).limit(limit)

        rows = await self._fetch(stmt, "curated listing")
        return [
            {
                "id": row.id,
                "content": row.content,
                "url": row.url,
                "metadata": decode_metadata(row.metadata_),
                "created_at": row.created_at,
            }
            for row in rows
        ]

    async def delete_curated(self, chunk_id: int) -> int:
        """
        Delete a curated row. Returns the number of deleted rows.
        """
        stmt = delete(CuratedContent).where(CuratedContent.id == chunk_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to delete curated chunk %s: %s", chunk_id, exc)
            raise StorageError(f"Failed to delete curated chunk {chunk_id}") from exc
        return result.rowcount

    async def get_stats(self) -> dict:
        """
        Return row counts for both tables and a curated breakdown.
        """
        source_type = func.coalesce(
            CuratedContent.metadata_["sourceType"].astext, "unknown"
        ).label("source_type")

        try:
            async with self._session_factory() as session:
                website_total = (
                    await session.execute(select(func.count()).select_from(SiteContent))
                ).scalar() or 0

                curated = (
                    await session.execute(
                        select(
                            func.count().label("total"),
                            func.count(CuratedContent.embedding).label("with_embedding"),
                            func.max(CuratedContent.created_at).label("latest_created_at"),
                        )
                    )
                ).one()

                by_type_rows = await session.execute(
                    select(source_type, func.count().label("count"))
                    .group_by(source_type)
                    .order_by(func.count().desc())
                )
                by_type = [
                    {"source_type": row.source_type, "count": row.count}
                    for row in by_type_rows
                ]
        except SQLAlchemyError as exc:
            logger.error("Failed to read knowledge stats: %s", exc)
            raise StorageError("Failed to read knowledge stats") from exc

        total = curated.total or 0
        with_embedding = curated.with_embedding or 0
        return {
            "website_content": website_total,
            "curated_content": total,
            "curated_embedding": {
                "total": total,
                "with_embedding": with_embedding,
                "without_embedding": total - with_embedding,
                "latest_created_at": curated.latest_created_at,
            },
            "curated_by_source_type": by_type,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch(self, stmt, what: str):
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.all()
        except SQLAlchemyError as exc:
            logger.error("Knowledge store %s failed: %s", what, exc)
            raise StorageError(f"Knowledge store {what} failed") from exc

    async def _insert(
        self,
        model: ContentTable,
        content: str,
        url: Optional[str],
        embedding: Optional[Sequence[float]],
        metadata: Dict[str, Any],
    ) -> int:
        if not content or not content.strip():
            raise ValueError("Chunk content must be non-empty")

        row = model(
            content=content,
            url=url,
            embedding=list(embedding) if embedding is not None else None,
            metadata_=metadata,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to insert into %s: %s", model.__tablename__, exc)
            raise StorageError(f"Failed to insert into {model.__tablename__}") from exc
        return row.id


def _rows_to_results(
    table: SourceTable,
    rows,
    threshold: float,
) -> List[KnowledgeSearchResult]:
    results: List[KnowledgeSearchResult] = []
    for row in rows:
        # the SQL bound is computed in double precision; re-check the strict bound here
        if float(row.similarity) <= threshold:
            continue
        results.append(
            build_result(table, row.id, row.content, row.url, row.metadata_, row.similarity)
        )
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results
