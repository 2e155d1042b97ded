"""
Retrieval Insights Endpoints

JSON views over ``knowledge_events``: what the assistant answers from, and
what users ask that the knowledge base cannot answer. Rendering is left to
the caller.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..auth.security import verify_admin
from ..db.insights import RetrievalInsights
from .dependencies import get_insights
from .models import InsightsOverview, MissingKnowledgeResponse, TopSourcesResponse

router = APIRouter(
    prefix="/admin/insights",
    tags=["insights"],
    dependencies=[Depends(verify_admin)],
)


@router.get("/overview", response_model=InsightsOverview)
async def insights_overview(
    insights: Annotated[RetrievalInsights, Depends(get_insights)],
    days: int = Query(30, ge=1, le=365),
) -> InsightsOverview:
    # one session; the queries run sequentially
    hit_ratio = await insights.hit_ratio(days)
    trends = await insights.trends(days)
    top_sources = await insights.top_sources(days, limit=10)
    top_chunks = await insights.top_chunks(days, limit=20)
    missing = await insights.missing_knowledge(days, limit=20)

    return InsightsOverview(
        hit_ratio=hit_ratio,
        trends=trends,
        top_sources=top_sources,
        top_chunks=top_chunks,
        missing_knowledge=missing["groups"],
    )


@router.get("/sources", response_model=TopSourcesResponse)
async def insights_sources(
    insights: Annotated[RetrievalInsights, Depends(get_insights)],
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(50, ge=1, le=200),
) -> TopSourcesResponse:
    return TopSourcesResponse(items=await insights.top_sources(days, limit=limit))


@router.get("/questions", response_model=MissingKnowledgeResponse)
async def insights_questions(
    insights: Annotated[RetrievalInsights, Depends(get_insights)],
    days: int = Query(30, ge=1, le=365),
    limit: int = Query(50, ge=1, le=200),
) -> MissingKnowledgeResponse:
    """
    Unanswered questions grouped by text, with the raw list of last asks.
    """
    missing = await insights.missing_knowledge(days, limit=limit, include_raw=True)
    return MissingKnowledgeResponse(**missing)
