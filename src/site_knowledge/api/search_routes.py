"""
Search Routes

Exposes the retrieval core to the chat layer. The endpoint never fails on
retrieval problems: embedding or storage outages degrade to an empty list.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends, status

from ..retrieval.models import Correlation
from ..retrieval.service import KnowledgeService
from .dependencies import get_knowledge_service
from .models import SearchRequest, SearchResult

router = APIRouter(prefix="/knowledge", tags=["search"])


@router.post(
    "/search",
    response_model=List[SearchResult],
    summary="Retrieve knowledge chunks for a user question",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    service: Annotated[KnowledgeService, Depends(get_knowledge_service)],
) -> List[SearchResult]:
    """
    Run the retrieval pipeline for ``req.query``.

    Parameters
    ----------
    req : SearchRequest
        Contains:
        - query: the user's question
        - chat_id / message_id / session_id: optional correlation ids stored
          with the retrieval event

    Returns
    -------
    List[SearchResult]
        Up to the configured limit of chunks, highest similarity first.
    """
    correlation = Correlation(
        chat_id=req.chat_id,
        message_id=req.message_id,
        session_id=req.session_id,
    )
    results = await service.search_knowledge(req.query, correlation)
    return [SearchResult(**result.to_public()) for result in results]
