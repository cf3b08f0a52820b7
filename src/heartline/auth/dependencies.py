"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

REST calls send ``Authorization: Bearer <jwt>``. Browsers can't set headers
on a WebSocket handshake, so streams also accept ``?token=<jwt>``.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Header, HTTPException
from starlette.websockets import WebSocket

from heartline.auth.jwt import TokenError, user_id_from_token

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthenticatedRequest:
    """The identity making the request or holding the connection."""

    user_id: int


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> AuthenticatedRequest:
    """Extract current identity (required — 401 if no auth)."""
    token = _bearer(authorization)
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return AuthenticatedRequest(user_id=user_id_from_token(token))
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def authenticate_websocket(websocket: WebSocket) -> Optional[AuthenticatedRequest]:
    """Identity for a WebSocket handshake, or None when missing/invalid.

    Called before accept(), so a rejected client never gets a session.
    """
    token = websocket.query_params.get("token") or _bearer(
        websocket.headers.get("authorization")
    )
    if not token:
        return None
    try:
        return AuthenticatedRequest(user_id=user_id_from_token(token))
    except TokenError as e:
        logger.info("heartline.auth.websocket_rejected", error=str(e))
        return None
