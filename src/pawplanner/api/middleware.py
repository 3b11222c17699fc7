"""Middleware: API key authentication.

Clients may send the key either as ``Authorization: Bearer <key>`` or, for
simple upload forms that cannot set Authorization, as ``X-API-Key: <key>``.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from pawplanner.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _key_matches(candidate: str | None, expected: str) -> bool:
    return candidate is not None and secrets.compare_digest(candidate.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Reject the request unless it carries the configured API key.

    If PAWPLANNER_API_KEY is not set, all requests pass.
    """
    settings: Settings = request.app.state.settings
    if settings.api_key is None:
        return

    bearer_key = credentials.credentials if credentials is not None else None
    if _key_matches(bearer_key, settings.api_key) or _key_matches(header_key, settings.api_key):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
