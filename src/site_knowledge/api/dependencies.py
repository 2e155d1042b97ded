import asyncio

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..db.insights import RetrievalInsights
from ..db.knowledge_store import KnowledgeStore
from ..db.session import get_async_session
from ..ingestion.pipeline import WebsiteIngestor
from ..ingestion.uploads import CuratedUploader
from ..retrieval.service import KnowledgeService

# Services are built once in the application lifespan and kept on app.state.


def get_knowledge_service(request: Request) -> KnowledgeService:
    return request.app.state.knowledge_service


def get_knowledge_store(request: Request) -> KnowledgeStore:
    return request.app.state.knowledge_store


def get_uploader(request: Request) -> CuratedUploader:
    return request.app.state.uploader


def get_ingestor(request: Request) -> WebsiteIngestor:
    return request.app.state.ingestor


def get_insights(session: AsyncSession = Depends(get_async_session)) -> RetrievalInsights:
    return RetrievalInsights(session)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ingest_cancel(request: Request) -> asyncio.Event:
    return request.app.state.ingest_cancel
