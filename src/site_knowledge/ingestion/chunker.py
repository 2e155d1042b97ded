"""
Fixed-window chunking for crawled pages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .extract import PageData


@dataclass
class PageChunk:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """
    Split text into overlapping character windows.

    Windows start every ``chunk_size - overlap`` characters. The window that
    reaches the end of the text is the last one, so concatenating the chunks
    with their overlaps removed reproduces the input.

    Raises
    ------
    ValueError
        If ``chunk_size`` is not positive or ``overlap`` is not in
        ``[0, chunk_size)``.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    if not text:
        return []

    step = chunk_size - overlap
    chunks: List[str] = []
    start = 0
    while True:
        end = min(start + chunk_size, len(text))
        chunks.append(text[start:end])
        if end >= len(text):
            break
        start += step
    return chunks


def detect_language(url: str) -> str:
    """``es`` for pages under ``/es/``, otherwise ``en``."""
    path = urlparse(url).path or "/"
    if not path.endswith("/"):
        path += "/"
    return "es" if "/es/" in path else "en"


def build_page_chunks(
    page: PageData,
    chunk_size: int = 1000,
    overlap: int = 200,
    scraped_at: Optional[datetime] = None,
) -> List[PageChunk]:
    """
    Chunk a page and attach the crawler metadata to every chunk.
    """
    if not page.content:
        return []

    stamp = (scraped_at or datetime.now(timezone.utc)).isoformat()
    language = detect_language(page.url)

    return [
        PageChunk(
            content=piece,
            metadata={
                "url": page.url,
                "title": page.title,
                "description": page.description,
                "language": language,
                "chunkIndex": index,
                "scrapedAt": stamp,
                "sourceType": "website",
            },
        )
        for index, piece in enumerate(chunk_text(page.content, chunk_size, overlap))
    ]
