"""Middleware: optional API key check for every /api/v1 route."""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _presented_key(bearer: HTTPAuthorizationCredentials | None, header_key: str | None) -> str | None:
    if bearer is not None:
        return bearer.credentials
    return header_key


async def verify_api_key(
    request: Request,
    bearer: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Reject the request unless it carries the configured key.

    With FRUITLENS_API_KEY unset every request passes. Otherwise the key is
    accepted as 'Authorization: Bearer <key>' or as an 'X-API-Key' header.
    """
    expected: str | None = request.app.state.settings.api_key
    if expected is None:
        return

    presented = _presented_key(bearer, header_key)
    if presented is None or not secrets.compare_digest(presented.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
