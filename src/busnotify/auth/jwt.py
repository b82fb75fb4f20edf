"""JWT token creation and verification.

Access tokens are issued by the login service; this module only needs
to verify them (and to mint them for operators via the CLI and for tests).
The ``sub`` claim is the user id.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from busnotify.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


class TokenExpiredError(TokenError):
    """Raised when an otherwise valid token is past its exp claim."""


def create_access_token(
    user_id: str,
    role: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    expires = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": expires,
        "iat": datetime.now(timezone.utc),
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT access token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type", "access") != "access":
        raise TokenError("Invalid token: not an access token")
    if not payload.get("sub"):
        raise TokenError("Invalid token: missing subject")
    return payload


def strip_bearer(value: Optional[str]) -> Optional[str]:
    """Accept both ``Bearer <token>`` and a raw token."""
    if not value:
        return None
    value = value.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None
