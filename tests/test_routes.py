"""
HTTP layer tests: admin key enforcement, search, curated knowledge admin
and insights endpoints, with services replaced through dependency overrides.
"""

import asyncio
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from conftest import MockRow, make_result
from site_knowledge.api.dependencies import (
    get_ingestor,
    get_knowledge_service,
    get_knowledge_store,
    get_uploader,
)
from site_knowledge.config import Settings, settings
from site_knowledge.core.errors import DocumentParseError, EmbeddingError
from site_knowledge.db.knowledge_store import KnowledgeStore
from site_knowledge.db.session import get_async_session
from site_knowledge.ingestion.pipeline import IngestStats, WebsiteIngestor
from site_knowledge.ingestion.uploads import CuratedUploader
from site_knowledge.main import create_app
from site_knowledge.retrieval.service import KnowledgeService

ADMIN_KEY = "test-admin-key"


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def service():
    return AsyncMock(spec=KnowledgeService)


@pytest.fixture
def store():
    return AsyncMock(spec=KnowledgeStore)


@pytest.fixture
def uploader():
    return AsyncMock(spec=CuratedUploader)


@pytest.fixture
def ingestor():
    return AsyncMock(spec=WebsiteIngestor)


@pytest.fixture
def mock_db_session():
    return AsyncMock()


@pytest.fixture
def overridden(app, service, store, uploader, ingestor, mock_db_session):
    async def _get_db():
        yield mock_db_session

    app.dependency_overrides[get_knowledge_service] = lambda: service
    app.dependency_overrides[get_knowledge_store] = lambda: store
    app.dependency_overrides[get_uploader] = lambda: uploader
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    app.dependency_overrides[get_async_session] = _get_db
    yield app
    app.dependency_overrides = {}


@pytest.fixture
async def async_client(overridden):
    transport = ASGITransport(app=overridden, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_key():
    with patch.object(settings, "admin_api_key", SecretStr(ADMIN_KEY)):
        yield {"x-admin-key": ADMIN_KEY}


# ---------------------------------------------------------------------
# Health / search
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_search_returns_public_results(async_client, service):
    service.search_knowledge.return_value = [make_result("Pricing: $25/hr", 0.82)]

    resp = await async_client.post(
        "/knowledge/search",
        json={"query": "What are the prices?", "chat_id": "c1"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body[0]["content"] == "Pricing: $25/hr"
    assert body[0]["similarity"] == 0.82
    assert body[0]["metadata"]["sourceTable"] == "document_knowledge"

    query, correlation = service.search_knowledge.await_args.args
    assert query == "What are the prices?"
    assert correlation.chat_id == "c1"


@pytest.mark.asyncio
async def test_search_with_no_results(async_client, service):
    service.search_knowledge.return_value = []

    resp = await async_client.post("/knowledge/search", json={"query": "anything"})

    assert resp.status_code == 200
    assert resp.json() == []


# ---------------------------------------------------------------------
# Admin security
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admin_endpoints_are_secured(async_client):
    # Not configured -> 403
    with patch.object(settings, "admin_api_key", None):
        resp = await async_client.get("/admin/knowledge/stats", headers={"x-admin-key": "anything"})
        assert resp.status_code == 403

    with patch.object(settings, "admin_api_key", SecretStr(ADMIN_KEY)):
        # No key -> 403
        resp = await async_client.get("/admin/knowledge/stats")
        assert resp.status_code == 403

        # Wrong key -> 403
        resp = await async_client.get("/admin/insights/overview", params={"key": "wrong"})
        assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_key_accepted_as_query_param(async_client, admin_key, store):
    store.list_curated.return_value = []

    resp = await async_client.get("/admin/knowledge", params={"key": ADMIN_KEY})

    assert resp.status_code == 200
    assert resp.json() == {"query": None, "count": 0, "documents": []}


@pytest.mark.asyncio
async def test_admin_key_comes_from_the_app_settings(store):
    app = create_app(Settings(admin_api_key=SecretStr("app-specific-key")))
    app.dependency_overrides[get_knowledge_store] = lambda: store
    store.list_curated.return_value = []

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        with patch.object(settings, "admin_api_key", SecretStr(ADMIN_KEY)):
            wrong = await client.get("/admin/knowledge", headers={"x-admin-key": ADMIN_KEY})
            right = await client.get("/admin/knowledge", headers={"x-admin-key": "app-specific-key"})

    assert wrong.status_code == 403
    assert right.status_code == 200


# ---------------------------------------------------------------------
# Curated knowledge admin
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_knowledge(async_client, admin_key, uploader):
    uploader.add_text.return_value = 17

    resp = await async_client.post(
        "/admin/knowledge",
        json={"content": "We offer 1:1 classes", "metadata": {"title": "Classes"}},
        headers=admin_key,
    )

    assert resp.status_code == 201
    assert resp.json()["ids"] == [17]
    uploader.add_text.assert_awaited_once_with(
        "We offer 1:1 classes", url=None, metadata={"title": "Classes"}
    )


@pytest.mark.asyncio
async def test_add_knowledge_embedding_outage(async_client, admin_key, uploader):
    uploader.add_text.side_effect = EmbeddingError("down")

    resp = await async_client.post("/admin/knowledge", json={"content": "x"}, headers=admin_key)

    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_list_knowledge_with_filter(async_client, admin_key, store):
    store.list_curated.return_value = [
        {
            "id": 1,
            "content": "PROMO2024XYZ",
            "url": None,
            "metadata": {"sourceType": "manual"},
            "created_at": datetime(2024, 1, 1),
        }
    ]

    resp = await async_client.get("/admin/knowledge", params={"q": " promo ", "limit": 10}, headers=admin_key)

    assert resp.status_code == 200
    body = resp.json()
    assert body["query"] == "promo"
    assert body["count"] == 1
    store.list_curated.assert_awaited_once_with(" promo ", limit=10)


@pytest.mark.asyncio
async def test_delete_knowledge(async_client, admin_key, store):
    store.delete_curated.return_value = 1
    resp = await async_client.delete("/admin/knowledge/5", headers=admin_key)
    assert resp.status_code == 200
    assert resp.json()["status"] == "deleted"

    store.delete_curated.return_value = 0
    resp = await async_client.delete("/admin/knowledge/6", headers=admin_key)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_clear_website_is_not_treated_as_an_id(async_client, admin_key, store):
    resp = await async_client.delete("/admin/knowledge/website", headers=admin_key)

    assert resp.status_code == 200
    assert resp.json()["status"] == "cleared"
    store.clear_site_content.assert_awaited_once()
    store.delete_curated.assert_not_awaited()


@pytest.mark.asyncio
async def test_pdf_upload(async_client, admin_key, uploader):
    uploader.add_pdf.return_value = [1, 2]

    resp = await async_client.post(
        "/admin/knowledge/pdf",
        files={"file": ("prices.pdf", b"%PDF-1.4 fake", "application/pdf")},
        data={"language": "en", "type": "pricing"},
        headers=admin_key,
    )

    assert resp.status_code == 201
    assert resp.json()["count"] == 2
    args, kwargs = uploader.add_pdf.await_args
    assert args == ("prices.pdf", b"%PDF-1.4 fake")
    assert kwargs == {"url": None, "language": "en", "doc_type": "pricing"}


@pytest.mark.asyncio
async def test_pdf_without_text_is_bad_request(async_client, admin_key, uploader):
    uploader.add_pdf.side_effect = DocumentParseError("No text content found in PDF.")

    resp = await async_client.post(
        "/admin/knowledge/pdf",
        files={"file": ("scan.pdf", b"%PDF", "application/pdf")},
        headers=admin_key,
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_document"


@pytest.mark.asyncio
async def test_docx_upload(async_client, admin_key, uploader):
    uploader.add_docx.return_value = [3, 4, 5]

    resp = await async_client.post(
        "/admin/knowledge/docx",
        files={"file": ("faq.docx", b"PK\x03\x04 fake", "application/octet-stream")},
        data={"language": "es", "url": "https://www.nyenglishteacher.com/es/faq"},
        headers=admin_key,
    )

    assert resp.status_code == 201
    assert resp.json()["ids"] == [3, 4, 5]
    args, kwargs = uploader.add_docx.await_args
    assert args == ("faq.docx", b"PK\x03\x04 fake")
    assert kwargs == {
        "url": "https://www.nyenglishteacher.com/es/faq",
        "language": "es",
        "doc_type": None,
    }


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected_before_parsing(async_client, admin_key, uploader):
    with patch.object(settings, "max_upload_bytes", 8):
        resp = await async_client.post(
            "/admin/knowledge/pdf",
            files={"file": ("big.pdf", b"%PDF-1.4 more than eight bytes", "application/pdf")},
            headers=admin_key,
        )

    assert resp.status_code == 400
    assert "too large" in resp.json()["detail"]
    uploader.add_pdf.assert_not_awaited()


@pytest.mark.asyncio
async def test_stats(async_client, admin_key, store):
    store.get_stats.return_value = {
        "website_content": 120,
        "curated_content": 4,
        "curated_embedding": {
            "total": 4,
            "with_embedding": 3,
            "without_embedding": 1,
            "latest_created_at": None,
        },
        "curated_by_source_type": [{"source_type": "pdf", "count": 3}, {"source_type": "manual", "count": 1}],
    }

    resp = await async_client.get("/admin/knowledge/stats", headers=admin_key)

    assert resp.status_code == 200
    assert resp.json()["curated_embedding"]["without_embedding"] == 1


@pytest.mark.asyncio
async def test_ingest_and_rebuild(async_client, overridden, admin_key, ingestor):
    stats = IngestStats(urls_found=5, urls_processed=4, chunks_created=20, errors=1)
    ingestor.run.return_value = stats
    ingestor.rebuild.return_value = stats

    resp = await async_client.post(
        "/admin/knowledge/ingest", json={"clear_existing": True}, headers=admin_key
    )
    assert resp.status_code == 200
    assert resp.json()["chunks_created"] == 20
    ingestor.run.assert_awaited_once_with(
        sitemap_url=None, clear_existing=True, cancel=overridden.state.ingest_cancel
    )

    resp = await async_client.post("/admin/knowledge/rebuild", headers=admin_key)
    assert resp.status_code == 200
    assert resp.json()["errors"] == 1
    ingestor.rebuild.assert_awaited_once_with(cancel=overridden.state.ingest_cancel)


@pytest.mark.asyncio
async def test_cancel_stops_a_running_ingest(async_client, admin_key, ingestor):
    started = asyncio.Event()

    async def run(sitemap_url=None, clear_existing=False, cancel=None):
        started.set()
        await cancel.wait()
        return IngestStats(urls_found=3, urls_processed=1, cancelled=True)

    ingestor.run.side_effect = run

    async def cancel_when_started():
        await started.wait()
        return await async_client.post("/admin/knowledge/ingest/cancel", headers=admin_key)

    ingest_resp, cancel_resp = await asyncio.wait_for(
        asyncio.gather(
            async_client.post("/admin/knowledge/ingest", headers=admin_key),
            cancel_when_started(),
        ),
        timeout=5,
    )

    assert cancel_resp.status_code == 200
    assert cancel_resp.json()["status"] == "cancelled"
    assert ingest_resp.status_code == 200
    assert ingest_resp.json()["cancelled"] is True


@pytest.mark.asyncio
async def test_new_ingest_clears_a_stale_cancel(async_client, overridden, admin_key, ingestor):
    ingestor.run.return_value = IngestStats()
    overridden.state.ingest_cancel.set()

    resp = await async_client.post("/admin/knowledge/ingest", headers=admin_key)

    assert resp.status_code == 200
    assert not ingestor.run.await_args.kwargs["cancel"].is_set()


@pytest.mark.asyncio
async def test_unhandled_errors_return_generic_500(async_client, admin_key, store):
    store.get_stats.side_effect = RuntimeError("connection string leaked")

    resp = await async_client.get("/admin/knowledge/stats", headers=admin_key)

    assert resp.status_code == 500
    assert "leaked" not in resp.text


# ---------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------

def _result(rows=None, one=None, scalar=None):
    result = MagicMock()
    result.all.return_value = rows or []
    result.one.return_value = one
    result.scalar.return_value = scalar
    return result


@pytest.mark.asyncio
async def test_insights_sources(async_client, admin_key, mock_db_session):
    mock_db_session.execute.side_effect = [
        _result(rows=[
            MockRow(
                source_id="https://www.nyenglishteacher.com/en/pricing",
                source_type="website",
                hits=12,
                avg_relevance=0.71234,
                last_hit=datetime(2024, 5, 1, 12, 0),
            )
        ]),
        _result(scalar="How much are classes?"),
    ]

    resp = await async_client.get("/admin/insights/sources", params={"days": 7}, headers=admin_key)

    assert resp.status_code == 200
    item = resp.json()["items"][0]
    assert item["hits"] == 12
    assert item["avg_relevance"] == 0.712
    assert item["example_query"] == "How much are classes?"
    assert item["last_hit"].startswith("2024-05-01")


@pytest.mark.asyncio
async def test_insights_questions(async_client, admin_key, mock_db_session):
    mock_db_session.execute.return_value = _result(rows=[
        MockRow(query="Do you teach French?", count=3, last_asked=datetime(2024, 5, 2, 8, 30)),
    ])

    resp = await async_client.get("/admin/insights/questions", headers=admin_key)

    assert resp.status_code == 200
    body = resp.json()
    assert body["groups"] == [{"topic": "Do you teach French?", "count": 3, "examples": ["Do you teach French?"]}]
    assert body["raw"] == [{"query": "Do you teach French?", "date": "2024-05-02"}]


@pytest.mark.asyncio
async def test_insights_overview(async_client, admin_key, mock_db_session):
    mock_db_session.execute.side_effect = [
        _result(one=MockRow(total=10, hits=7)),
        _result(rows=[
            MockRow(day=date(2024, 5, 1), total_queries=10, hits=7, misses=3, avg_score=0.6666),
        ]),
        _result(rows=[]),  # top sources
        _result(rows=[
            MockRow(chunk_id="document_knowledge:1", source_id="https://x", source_type="manual",
                    hits=4, avg_relevance=0.8),
        ]),
        _result(rows=[MockRow(query="visa help", count=2, last_asked=None)]),
    ]

    resp = await async_client.get("/admin/insights/overview", headers=admin_key)

    assert resp.status_code == 200
    body = resp.json()
    assert body["hit_ratio"] == {"total": 10, "hits": 7, "misses": 3, "ratio": 70.0}
    assert body["trends"][0] == {
        "date": "2024-05-01",
        "total_queries": 10,
        "hits": 7,
        "misses": 3,
        "avg_score": 0.667,
    }
    assert body["top_chunks"][0]["chunk_id"] == "document_knowledge:1"
    assert body["missing_knowledge"][0]["topic"] == "visa help"
