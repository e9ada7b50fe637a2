"""
Auth utilities for the streak API.

Session resolution is owned by the upstream gateway, which forwards the
authenticated user as the X-User-Id header.
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import logging

logger = logging.getLogger("streakline")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Authenticated user ID forwarded by the gateway")
) -> str:
    """
    Extract current user ID from request context.

    Raises:
        HTTPException 401: Missing authentication
    """
    user_id = (x_user_id or "").strip()
    if user_id:
        request.state.user_id = user_id
        return user_id

    logger.debug("Rejected request without X-User-Id", extra={"path": request.url.path})
    raise HTTPException(
        status_code=401,
        detail="Unauthorized",
    )
