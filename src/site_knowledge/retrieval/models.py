"""
Retrieval Data Models

This module defines the typed view of a stored chunk's free-form metadata
and the canonical search result returned by the retrieval core.

Chunk metadata is persisted as open JSON. On read it is parsed into a
discriminated union keyed on ``sourceType`` so that ranking, citation and
analytics code can branch exhaustively instead of sniffing keys. Unknown
extension keys are kept.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SourceTable = Literal["website_content", "document_knowledge"]
SourceType = Literal["website", "manual", "pdf", "docx"]

SITE_TABLE: SourceTable = "website_content"
CURATED_TABLE: SourceTable = "document_knowledge"

logger = logging.getLogger("knowledge.retrieval")


# ---------------------------------------------------------------------
# Metadata Variants
# ---------------------------------------------------------------------

class _BaseMetadata(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    language: Optional[Literal["en", "es"]] = None
    chunkIndex: Optional[int] = Field(default=None, ge=0)
    chunkId: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WebsiteMetadata(_BaseMetadata):
    """Metadata written by the website crawler."""
    sourceType: Literal["website"] = "website"
    url: Optional[str] = None
    scrapedAt: Optional[str] = None


class ManualMetadata(_BaseMetadata):
    """Metadata for ad hoc text entered by an administrator."""
    sourceType: Literal["manual"] = "manual"


class PdfMetadata(_BaseMetadata):
    """Metadata for chunks extracted from an uploaded PDF."""
    sourceType: Literal["pdf"] = "pdf"
    sourceFile: str
    type: Optional[str] = None


class DocxMetadata(_BaseMetadata):
    """Metadata for chunks extracted from an uploaded Word document."""
    sourceType: Literal["docx"] = "docx"
    sourceFile: str
    type: Optional[str] = None


ChunkMetadata = Annotated[
    Union[WebsiteMetadata, ManualMetadata, PdfMetadata, DocxMetadata],
    Field(discriminator="sourceType"),
]

_metadata_adapter: TypeAdapter[ChunkMetadata] = TypeAdapter(ChunkMetadata)


def infer_source_type(table: SourceTable, raw: Dict[str, Any]) -> SourceType:
    """
    Resolve the source type of a stored chunk.

    An explicit ``sourceType`` wins. Otherwise rows from the site table are
    ``website``; curated rows with a ``sourceFile`` are ``docx`` or ``pdf``
    by extension, and everything else is ``manual``.
    """
    explicit = raw.get("sourceType")
    if explicit in ("website", "manual", "pdf", "docx"):
        return explicit
    if table == SITE_TABLE:
        return "website"
    source_file = raw.get("sourceFile")
    if source_file:
        return "docx" if str(source_file).lower().endswith(".docx") else "pdf"
    return "manual"


def decode_metadata(raw: Any) -> Dict[str, Any]:
    """
    Coerce a stored metadata value into a dict.

    Older writers stored the blob as a JSON-encoded string; anything that does
    not decode to an object is treated as empty.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def parse_metadata(table: SourceTable, raw: Any) -> ChunkMetadata:
    """
    Parse a stored metadata blob into its typed variant.

    Malformed values for known keys are dropped rather than failing the
    whole row, since legacy rows were written by several tools. If the blob
    still does not validate, only the inferred ``sourceType`` (and the
    ``sourceFile`` a file variant requires) is kept.
    """
    data = decode_metadata(raw)
    data["sourceType"] = infer_source_type(table, data)
    if data["sourceType"] in ("pdf", "docx") and not data.get("sourceFile"):
        data["sourceType"] = "manual"

    try:
        return _metadata_adapter.validate_python(data)
    except ValueError:
        pass

    known = {"title", "description", "language", "chunkIndex", "chunkId"}
    salvaged = {k: v for k, v in data.items() if k not in known}
    try:
        return _metadata_adapter.validate_python(salvaged)
    except ValueError:
        logger.warning("Discarding invalid %s metadata: %r", table, raw)

    bare: Dict[str, Any] = {"sourceType": data["sourceType"]}
    if data["sourceType"] in ("pdf", "docx"):
        bare["sourceFile"] = str(data["sourceFile"])
    return _metadata_adapter.validate_python(bare)


def stable_chunk_id(table: SourceTable, row_id: Optional[int], url: Optional[str], content: str) -> str:
    """
    Identifier used for analytics when a row carries no explicit chunkId.

    Curated rows are addressed by primary key; site rows are rebuilt on every
    crawl, so they are addressed by a content hash that survives a rebuild.
    """
    if table == CURATED_TABLE and row_id is not None:
        return f"{CURATED_TABLE}:{row_id}"
    base = f"{table}::{url or ''}::{content[:500]}"
    return f"{table}:{hashlib.sha1(base.encode('utf-8')).hexdigest()}"


# ---------------------------------------------------------------------
# Search Results
# ---------------------------------------------------------------------

class KnowledgeSearchResult(BaseModel):
    """
    A single retrieved chunk, annotated with its provenance.

    ``similarity`` is ``1 - cosine_distance`` for semantic matches and a
    fixed high placeholder for keyword-fallback matches.
    """
    content: str
    url: Optional[str] = None
    similarity: float
    source_table: SourceTable
    metadata: ChunkMetadata

    model_config = ConfigDict(frozen=True)

    @property
    def source_type(self) -> SourceType:
        return self.metadata.sourceType

    @property
    def chunk_id(self) -> Optional[str]:
        return self.metadata.chunkId

    def with_similarity(self, similarity: float) -> "KnowledgeSearchResult":
        return self.model_copy(update={"similarity": similarity})

    def to_public(self) -> Dict[str, Any]:
        """
        Shape returned to prompt builders and HTTP callers.
        """
        meta = self.metadata.model_dump(exclude_none=True)
        meta["sourceTable"] = self.source_table
        return {
            "content": self.content,
            "url": self.url,
            "similarity": self.similarity,
            "metadata": meta,
        }


def build_result(
    table: SourceTable,
    row_id: Optional[int],
    content: str,
    url: Optional[str],
    raw_metadata: Any,
    similarity: float,
) -> KnowledgeSearchResult:
    """
    Turn a stored row into an annotated search result.
    """
    metadata = parse_metadata(table, raw_metadata)
    if not metadata.chunkId:
        metadata = metadata.model_copy(
            update={"chunkId": stable_chunk_id(table, row_id, url, content)}
        )
    return KnowledgeSearchResult(
        content=content,
        url=url,
        similarity=float(similarity),
        source_table=table,
        metadata=metadata,
    )


class Correlation(BaseModel):
    """
    Optional caller-supplied identifiers stored with retrieval events.
    They are never interpreted by the retrieval core.
    """
    chat_id: Optional[str] = None
    message_id: Optional[str] = None
    session_id: Optional[str] = None
