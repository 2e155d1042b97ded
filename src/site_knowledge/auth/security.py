"""
Admin Access Control

Administrative endpoints are protected by a shared API key supplied either
as the ``x-admin-key`` header or the ``key`` query parameter. When no key is
configured, admin access is disabled entirely.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException, Query, Request, status

from ..config import Settings


async def verify_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
    key: Optional[str] = Query(None),
) -> None:
    """
    Verify the request is from an admin using the API key configured on the
    serving application. Checks header first, then query param.

    Raises
    ------
    HTTPException(403)
        When the key is missing, wrong, or admin access is not configured.
    """
    config: Settings = request.app.state.settings
    expected_key = config.admin_api_key.get_secret_value() if config.admin_api_key else None

    if not expected_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is not configured (ADMIN_API_KEY missing)",
        )

    provided_key = x_admin_key or key

    if not provided_key or not secrets.compare_digest(provided_key.encode(), expected_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing admin API key",
        )
