"""API-key guard for the administrative analysis endpoints."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from donorscope.settings import Settings, get_settings


def get_admin_settings() -> Settings:
    """Dependency provider returning the process settings.

    Takes no parameters so FastAPI cannot bind any request input to the settings
    lookup.
    """

    return get_settings()


def is_valid_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """Return True when ``provided`` matches the configured admin key."""

    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_admin_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_admin_settings),
) -> None:
    """Validate the ``X-API-KEY`` header.

    Raises:
        HTTPException: 401 when the header is missing, 403 when it does not match.
    """

    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-API-KEY")
    if not is_valid_api_key(x_api_key, settings.api.key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
