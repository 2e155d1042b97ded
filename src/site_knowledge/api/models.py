"""
API Models

Pydantic request/response models for the search, curated knowledge and
insights endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    query: str = Field(..., max_length=2000)
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    session_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class SearchResult(BaseModel):
    """
    Public shape of one retrieved chunk.
    """
    content: str
    url: Optional[str] = None
    similarity: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------
# Curated Knowledge
# ---------------------------------------------------------------------

class AddKnowledgeRequest(BaseModel):
    content: str = Field(..., min_length=1)
    url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["created", "deleted", "cleared", "cancelled", "ok"]
    count: Optional[int] = Field(default=None, ge=0)
    ids: Optional[List[int]] = None


class KnowledgeItem(BaseModel):
    id: int
    content: str
    url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class KnowledgeList(BaseModel):
    query: Optional[str] = None
    count: int
    documents: List[KnowledgeItem]


class CuratedEmbeddingStats(BaseModel):
    total: int
    with_embedding: int
    without_embedding: int
    latest_created_at: Optional[datetime] = None


class SourceTypeCount(BaseModel):
    source_type: str
    count: int


class KnowledgeStats(BaseModel):
    website_content: int
    curated_content: int
    curated_embedding: CuratedEmbeddingStats
    curated_by_source_type: List[SourceTypeCount]


class IngestRequest(BaseModel):
    sitemap_url: Optional[str] = None
    clear_existing: bool = False


class IngestResult(BaseModel):
    urls_found: int
    urls_processed: int
    chunks_created: int
    errors: int
    cancelled: bool = False


# ---------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------

class HitRatio(BaseModel):
    total: int
    hits: int
    misses: int
    ratio: float


class TopSource(BaseModel):
    source_id: str
    source_type: str
    hits: int
    avg_relevance: float
    example_query: str
    last_hit: str


class TopChunk(BaseModel):
    chunk_id: str
    source_id: str
    source_type: str
    hits: int
    avg_relevance: float


class MissingGroup(BaseModel):
    topic: str
    count: int
    examples: List[str]


class MissingRaw(BaseModel):
    query: str
    date: str


class TrendPoint(BaseModel):
    date: str
    total_queries: int
    hits: int
    misses: int
    avg_score: float


class InsightsOverview(BaseModel):
    hit_ratio: HitRatio
    trends: List[TrendPoint]
    top_sources: List[TopSource]
    top_chunks: List[TopChunk]
    missing_knowledge: List[MissingGroup]


class TopSourcesResponse(BaseModel):
    items: List[TopSource]


class MissingKnowledgeResponse(BaseModel):
    groups: List[MissingGroup]
    raw: List[MissingRaw]
