"""
Error Types and Global Error Handling

This module defines the typed failure hierarchy used inside the knowledge
core and the application-wide exception handlers for the HTTP layer.

Design Goals
------------
- Internal callers can tell failure causes apart (embedding vs. storage vs. fetch)
- Conversion to "swallow and degrade" happens only at designated boundaries
- Never leak internal exception details to clients
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("knowledge.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class KnowledgeError(RuntimeError):
    """Base class for all knowledge-core failures."""


class EmbeddingError(KnowledgeError):
    """Raised when the embedding provider fails or returns malformed output."""


class StorageError(KnowledgeError):
    """Raised when a knowledge store read or write fails."""


class FetchError(KnowledgeError):
    """Raised when a sitemap or page cannot be fetched."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class DocumentParseError(KnowledgeError):
    """Raised when an uploaded document yields no usable text."""


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def document_parse_error_handler(
    request: Request,
    exc: DocumentParseError,
) -> JSONResponse:
    """
    Map rejected uploads to a 400 with the parser's message.
    """
    logger.warning(
        "Rejected document upload on %s: %s",
        request.url.path,
        exc,
    )
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_document", "detail": str(exc)},
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
