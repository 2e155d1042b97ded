from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from site_knowledge.retrieval.models import build_result


# Helper to create mock DB rows
class MockRow:
    def __init__(self, **kwargs):
        for k, v in kwargs.items():
            setattr(self, k, v)


class FakeSessionFactory:
    """
    Stands in for async_sessionmaker: every call yields the same session
    through ``async with``.
    """

    def __init__(self, session):
        self.session = session
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc_info):
        return False


def make_session(rows: Optional[List[Any]] = None) -> MagicMock:
    session = MagicMock()
    result = MagicMock()
    result.all.return_value = rows or []
    result.rowcount = len(rows or [])
    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def make_result(
    content: str,
    similarity: float,
    table: str = "document_knowledge",
    url: Optional[str] = "https://www.nyenglishteacher.com/en/pricing",
    row_id: Optional[int] = 1,
    metadata: Optional[Dict[str, Any]] = None,
):
    return build_result(table, row_id, content, url, metadata or {}, similarity)


@pytest.fixture
def mock_session():
    return make_session()


@pytest.fixture
def session_factory(mock_session):
    return FakeSessionFactory(mock_session)
