"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
pgvector-backed knowledge store for PostgreSQL.
"""

from .session import create_session_factory, get_async_session, init_db
from .models import Base, SiteContent, CuratedContent, KnowledgeEvent
from .knowledge_store import KnowledgeStore
from .insights import RetrievalInsights

__all__ = [
    "create_session_factory",
    "get_async_session",
    "init_db",
    "Base",
    "SiteContent",
    "CuratedContent",
    "KnowledgeEvent",
    "KnowledgeStore",
    "RetrievalInsights",
]
