"""
Curated Knowledge Administration

Admin endpoints for curating ``document_knowledge`` and for maintaining the
crawled ``website_content`` table.

Security
--------
All endpoints are protected by `verify_admin` which requires:
- `x-admin-key` header OR
- `key` query parameter
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from ..auth.security import verify_admin
from ..config import Settings
from ..core.errors import DocumentParseError, EmbeddingError
from ..db.knowledge_store import KnowledgeStore
from ..ingestion.pipeline import WebsiteIngestor
from ..ingestion.uploads import CuratedUploader
from .dependencies import (
    get_ingest_cancel,
    get_ingestor,
    get_knowledge_store,
    get_settings,
    get_uploader,
)
from .models import (
    AddKnowledgeRequest,
    IngestRequest,
    IngestResult,
    KnowledgeItem,
    KnowledgeList,
    KnowledgeStats,
    OperationResult,
)

logger = logging.getLogger("knowledge.admin")

router = APIRouter(
    prefix="/admin/knowledge",
    tags=["admin"],
    dependencies=[Depends(verify_admin)],
)


def _embedding_unavailable(exc: EmbeddingError) -> HTTPException:
    logger.error("Embedding failed during curated upload: %s", exc)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Embedding provider unavailable",
    )


# ---------------------------------------------------------------------
# Curated entries
# ---------------------------------------------------------------------

@router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def add_knowledge(
    req: AddKnowledgeRequest,
    uploader: Annotated[CuratedUploader, Depends(get_uploader)],
) -> OperationResult:
    """
    Embed and store one manual knowledge entry.
    """
    try:
        chunk_id = await uploader.add_text(req.content, url=req.url, metadata=req.metadata)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except EmbeddingError as exc:
        raise _embedding_unavailable(exc)

    return OperationResult(status="created", count=1, ids=[chunk_id])


@router.get("", response_model=KnowledgeList)
async def list_knowledge(
    store: Annotated[KnowledgeStore, Depends(get_knowledge_store)],
    q: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=50),
) -> KnowledgeList:
    """
    List curated entries, newest first, optionally filtered by substring.
    """
    rows = await store.list_curated(q, limit=limit)
    return KnowledgeList(
        query=q.strip() if q and q.strip() else None,
        count=len(rows),
        documents=[KnowledgeItem(**row) for row in rows],
    )


async def _read_upload(file: UploadFile, config: Settings) -> bytes:
    """
    Read an uploaded file, refusing anything over ``max_upload_bytes``.
    """
    limit = config.max_upload_bytes
    # one byte past the limit is enough to reject the file
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise DocumentParseError(f"File is too large (limit {limit} bytes)")
    logger.info("Document upload: %s (%d bytes)", file.filename, len(data))
    return data


@router.post("/pdf", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def upload_pdf(
    uploader: Annotated[CuratedUploader, Depends(get_uploader)],
    config: Annotated[Settings, Depends(get_settings)],
    file: UploadFile = File(...),
    url: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    doc_type: Optional[str] = Form(None, alias="type"),
) -> OperationResult:
    """
    Extract, chunk and store a PDF as curated knowledge.

    Oversized, unreadable or text-less files are rejected with 400 by the
    DocumentParseError handler.
    """
    data = await _read_upload(file, config)

    try:
        ids = await uploader.add_pdf(
            file.filename or "",
            data,
            url=url,
            language=language,
            doc_type=doc_type,
        )
    except EmbeddingError as exc:
        raise _embedding_unavailable(exc)

    return OperationResult(status="created", count=len(ids), ids=ids)


@router.post("/docx", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
async def upload_docx(
    uploader: Annotated[CuratedUploader, Depends(get_uploader)],
    config: Annotated[Settings, Depends(get_settings)],
    file: UploadFile = File(...),
    url: Optional[str] = Form(None),
    language: Optional[str] = Form(None),
    doc_type: Optional[str] = Form(None, alias="type"),
) -> OperationResult:
    """
    Extract, chunk and store a Word document as curated knowledge.
    """
    data = await _read_upload(file, config)

    try:
        ids = await uploader.add_docx(
            file.filename or "",
            data,
            url=url,
            language=language,
            doc_type=doc_type,
        )
    except EmbeddingError as exc:
        raise _embedding_unavailable(exc)

    return OperationResult(status="created", count=len(ids), ids=ids)


# ---------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------

@router.get("/stats", response_model=KnowledgeStats)
async def knowledge_stats(
    store: Annotated[KnowledgeStore, Depends(get_knowledge_store)],
) -> KnowledgeStats:
    return KnowledgeStats(**await store.get_stats())


@router.delete("/website", response_model=OperationResult)
async def clear_website(
    store: Annotated[KnowledgeStore, Depends(get_knowledge_store)],
) -> OperationResult:
    await store.clear_site_content()
    return OperationResult(status="cleared")


# Registered after the static "/website" path so it is matched first.
@router.delete("/{chunk_id}", response_model=OperationResult)
async def delete_knowledge(
    chunk_id: int,
    store: Annotated[KnowledgeStore, Depends(get_knowledge_store)],
) -> OperationResult:
    deleted = await store.delete_curated(chunk_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Knowledge entry {chunk_id} not found",
        )
    return OperationResult(status="deleted", count=deleted)


@router.post("/ingest", response_model=IngestResult)
async def ingest_website(
    ingestor: Annotated[WebsiteIngestor, Depends(get_ingestor)],
    cancel: Annotated[asyncio.Event, Depends(get_ingest_cancel)],
    req: Optional[IngestRequest] = None,
) -> IngestResult:
    """
    Crawl the website into ``website_content`` and return the run counters.
    """
    req = req or IngestRequest()
    cancel.clear()
    stats = await ingestor.run(
        sitemap_url=req.sitemap_url,
        clear_existing=req.clear_existing,
        cancel=cancel,
    )
    return IngestResult(**stats.to_dict())


@router.post("/ingest/cancel", response_model=OperationResult)
async def cancel_ingest(
    cancel: Annotated[asyncio.Event, Depends(get_ingest_cancel)],
) -> OperationResult:
    """
    Stop running crawls from fetching further pages. Pages already in flight
    finish and the run reports ``cancelled``.
    """
    cancel.set()
    logger.info("Website ingestion cancel requested")
    return OperationResult(status="cancelled")


@router.post("/rebuild", response_model=IngestResult)
async def rebuild_website(
    ingestor: Annotated[WebsiteIngestor, Depends(get_ingestor)],
    cancel: Annotated[asyncio.Event, Depends(get_ingest_cancel)],
) -> IngestResult:
    """
    Clear crawled content and ingest the whole site again.
    """
    cancel.clear()
    stats = await ingestor.rebuild(cancel=cancel)
    return IngestResult(**stats.to_dict())
