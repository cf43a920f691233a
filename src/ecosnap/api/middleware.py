"""Shared access key guard for every ``/api/v1`` route."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from ecosnap.config import Settings

_access_key_scheme = HTTPBearer(auto_error=False, description="ECOSNAP_ACCESS_KEY, when configured")


def _configured_access_key(request: Request) -> str | None:
    settings: Settings = request.app.state.settings
    return settings.access_key


def _presented_key_matches(credentials: HTTPAuthorizationCredentials | None, expected: str) -> bool:
    if credentials is None:
        return False
    return secrets.compare_digest(credentials.credentials.encode(), expected.encode())


async def verify_access_key(
    expected: Annotated[str | None, Depends(_configured_access_key)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_access_key_scheme)],
) -> None:
    """Reject the request unless it carries ``Authorization: Bearer <ECOSNAP_ACCESS_KEY>``.

    With no access key configured the service is open.
    """
    if expected is None or _presented_key_matches(credentials, expected):
        return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing access key",
        headers={"WWW-Authenticate": "Bearer"},
    )
