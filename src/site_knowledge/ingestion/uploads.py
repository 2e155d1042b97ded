"""
Curated knowledge uploads: administrator-entered text, PDF and Word documents.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Any, Dict, List, Optional

import docx  # python-docx
import fitz  # PyMuPDF
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings
from ..core.errors import DocumentParseError
from ..db.knowledge_store import KnowledgeStore
from ..embeddings.embedder import Embedder

logger = logging.getLogger("knowledge.uploads")


def _clean_text(text: str) -> str:
    if not text:
        return ""
    text = text.replace("\x00", "")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def extract_pdf_text(data: bytes) -> str:
    """
    Extract page text from PDF bytes, pages separated by blank lines.

    Raises
    ------
    DocumentParseError
        If the bytes are empty or not a readable PDF.
    """
    if not data:
        raise DocumentParseError("PDF file is empty or corrupted")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise DocumentParseError(f"PDF parsing failed: {exc}") from exc

    try:
        pages = []
        for page in doc:
            page_text = _clean_text(page.get_text("text"))
            if page_text:
                pages.append(page_text)
        return "\n\n".join(pages)
    finally:
        doc.close()


def extract_docx_text(data: bytes) -> str:
    """
    Extract paragraph and table text from DOCX bytes, blocks separated by
    blank lines.

    Raises
    ------
    DocumentParseError
        If the bytes are empty or not a readable Word document.
    """
    if not data:
        raise DocumentParseError("DOCX file is empty or corrupted")

    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as exc:
        raise DocumentParseError(f"DOCX parsing failed: {exc}") from exc

    blocks = [paragraph.text for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            blocks.append(" | ".join(cell.text.strip() for cell in row.cells))
    return _clean_text("\n\n".join(b.strip() for b in blocks if b.strip()))


class CuratedUploader:
    """
    Embeds and stores curated content in ``document_knowledge``.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        chunk_size: Optional[int] = None,
        default_url: Optional[str] = None,
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.default_url = default_url if default_url is not None else settings.curated_default_url
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size or settings.curated_chunk_size,
            chunk_overlap=0,
            length_function=len,
            separators=["\n\n", "\n", ".", " ", ""],
        )

    async def add_text(
        self,
        content: str,
        url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Store one manual entry as a single chunk and return its id.

        Raises
        ------
        ValueError
            If ``content`` is blank.
        EmbeddingError, StorageError
            Propagated from the embedder and store.
        """
        if not content or not content.strip():
            raise ValueError("Content is required")

        meta = {**(metadata or {}), "sourceType": "manual"}
        embedding = await self.embedder.embed_one(content)
        chunk_id = await self.store.add_curated_chunk(
            content, url or self.default_url, embedding, meta
        )
        logger.info("Added manual knowledge entry %s", chunk_id)
        return chunk_id

    async def add_pdf(
        self,
        filename: str,
        data: bytes,
        url: Optional[str] = None,
        language: Optional[str] = None,
        doc_type: Optional[str] = None,
    ) -> List[int]:
        """
        Extract, split, embed and store a PDF. Returns the new row ids.

        Raises
        ------
        DocumentParseError
            If the file is not a PDF, is too large or contains no
            extractable text.
        """
        if not filename.lower().endswith(".pdf"):
            raise DocumentParseError("Invalid file type. Only PDF files are supported.")
        self._check_size("PDF", data)

        text = extract_pdf_text(data)
        if not text.strip():
            raise DocumentParseError(
                "No text content found in PDF. The file may be scanned images "
                "without OCR, or may be empty."
            )
        return await self._store_document("pdf", filename, text, url, language, doc_type)

    async def add_docx(
        self,
        filename: str,
        data: bytes,
        url: Optional[str] = None,
        language: Optional[str] = None,
        doc_type: Optional[str] = None,
    ) -> List[int]:
        """
        Extract, split, embed and store a Word document. Returns the new row ids.

        Raises
        ------
        DocumentParseError
            If the file is not a DOCX, is too large or contains no text.
        """
        if not filename.lower().endswith(".docx"):
            raise DocumentParseError("Invalid file type. Only DOCX files are supported.")
        self._check_size("DOCX", data)

        text = extract_docx_text(data)
        if not text:
            raise DocumentParseError(
                "No text content found in DOCX. The document may be empty or unsupported."
            )
        return await self._store_document("docx", filename, text, url, language, doc_type)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_size(self, kind: str, data: bytes) -> None:
        if len(data) > self.max_upload_bytes:
            raise DocumentParseError(
                f"{kind} file is too large (limit {self.max_upload_bytes} bytes)"
            )

    async def _store_document(
        self,
        source_type: str,
        filename: str,
        text: str,
        url: Optional[str],
        language: Optional[str],
        doc_type: Optional[str],
    ) -> List[int]:
        chunks = [c.strip() for c in self.splitter.split_text(text) if c.strip()]
        logger.info("Processing %s: %d chunks", filename, len(chunks))

        metadata: Dict[str, Any] = {"sourceType": source_type, "sourceFile": filename}
        if doc_type:
            metadata["type"] = doc_type
        if language:
            metadata["language"] = language

        embeddings = await self.embedder.embed(chunks)
        ids = []
        for index, (chunk, embedding) in enumerate(zip(chunks, embeddings)):
            ids.append(
                await self.store.add_curated_chunk(
                    chunk,
                    url or self.default_url,
                    embedding,
                    {**metadata, "chunkIndex": index},
                )
            )
        return ids
