"""Middleware: optional Bearer API key check for all /api/v1 routes."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from coincounter.config import Settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _key_matches(credentials: HTTPAuthorizationCredentials | None, api_key: str) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), api_key.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject the request unless it carries 'Authorization: Bearer <COINCOUNTER_API_KEY>'.

    With no key configured every request passes.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None or _key_matches(credentials, settings.api_key):
        return

    client = request.client.host if request.client else "unknown"
    logger.warning("Rejected request to %s from %s: bad API key", request.url.path, client)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
