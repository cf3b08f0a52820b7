"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. Accounts are
owned by the users service; this service only needs to check a token's
signature and read the participant id from ``sub``.

PyJWT requires ``sub`` to be a string, so the integer id is stringified on
the way in and parsed on the way out.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from heartline.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: int,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token for ``user_id``."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": expires,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        return jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")


def user_id_from_token(token: str) -> int:
    """Verify ``token`` and return the participant id it was issued for."""
    payload = verify_token(token)
    if payload.get("type") != "access":
        raise TokenError("Not an access token")
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenError("Token has no valid subject")
    if user_id < 1:
        raise TokenError("Token has no valid subject")
    return user_id
