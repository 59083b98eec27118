"""
Admin auth dependency.
"""

from typing import Annotated

from fastapi import Depends, Request

from marketmaker import config
from marketmaker.api_errors import APIError


def _get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:]
    return None


async def require_admin(request: Request) -> None:
    """Require the admin API key."""
    if not config.ADMIN_KEY:
        raise APIError(500, "admin_required",
                       "MARKETMAKER_ADMIN_KEY not configured")
    token = _get_bearer_token(request)
    if not token:
        raise APIError(401, "auth_required", "Authorization header required")
    if token != config.ADMIN_KEY:
        raise APIError(403, "admin_required", "Admin API key required")


AdminDep = Annotated[None, Depends(require_admin)]
