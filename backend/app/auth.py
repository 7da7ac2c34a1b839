"""
Per-request credential extraction.

The bridge never stores credentials: every call carries the mailbox
username/password (query string for GET endpoints, params for /mcp) and they
live only as long as that request. They are never logged or echoed back.
"""

from typing import Any, Mapping, Optional

from fastapi import HTTPException, Query

from app.errors import ValidationError
from app.models.mail import Credentials

MISSING_CREDENTIALS = "Missing username or password"


def require_credentials(username: Optional[str], password: Optional[str]) -> Credentials:
    """
    Build Credentials, rejecting blank values.

    Raises:
        ValidationError: If either value is missing or empty.
    """
    if not username or not password:
        raise ValidationError(MISSING_CREDENTIALS)
    return Credentials(username=username, password=password)


def credentials_from_params(params: Mapping[str, Any]) -> Credentials:
    """Credentials from an /mcp params object."""
    username = params.get("username")
    password = params.get("password")
    return require_credentials(
        str(username) if username is not None else None,
        str(password) if password is not None else None,
    )


async def get_credentials(
    username: Optional[str] = Query(None),
    password: Optional[str] = Query(None),
) -> Credentials:
    """
    FastAPI dependency reading username/password from the query string.

    Raises:
        HTTPException: 400 if either is missing.
    """
    try:
        return require_credentials(username, password)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
