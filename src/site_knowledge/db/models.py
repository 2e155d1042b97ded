"""
SQLAlchemy Models

Defines the database schema for:
- Site-sourced content chunks (produced by the website crawler)
- Curated content chunks (manual text and document uploads)
- Retrieval events (hit/miss telemetry for later analysis)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

EMBEDDING_DIMENSIONS = 1536


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Content Chunk Models
# ---------------------------------------------------------------------

class _ContentChunkColumns:
    """
    Columns shared by both knowledge tables.

    Both tables use the same embedding dimension so a single cosine
    similarity metric is meaningful across sources.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    # Nullable only until an embedding is backfilled
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)


class SiteContent(_ContentChunkColumns, Base):
    """
    A chunk of text scraped from the business website.
    """
    __tablename__ = "website_content"

    __table_args__ = (
        Index("idx_website_content_url", "url"),
    )


class CuratedContent(_ContentChunkColumns, Base):
    """
    A chunk of manually supplied knowledge (admin text, PDF, DOCX).
    """
    __tablename__ = "document_knowledge"

    __table_args__ = (
        Index("idx_document_knowledge_created", "created_at"),
    )


ContentTable = Union[type[SiteContent], type[CuratedContent]]


# ---------------------------------------------------------------------
# Retrieval Event Model
# ---------------------------------------------------------------------

class KnowledgeEvent(Base):
    """
    One row of retrieval telemetry.

    A single retrieval writes either one miss row (hit = False, no source
    columns) or one hit row per returned chunk, all sharing the same query
    and correlation ids. Rows are append-only.
    """
    __tablename__ = "knowledge_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    source_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chunk_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    relevance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("idx_knowledge_events_created", "created_at"),
        Index("idx_knowledge_events_hit", "hit", "created_at"),
        Index("idx_knowledge_events_source", "source_id"),
    )
