"""Connection authenticator — handshake-time identity for socket.io.

Learn: The token only ever comes from the handshake: the socket.io
``auth`` payload (``{token}``), or the ``token`` query parameter of the
handshake request. There is no post-connect authenticate message, so a
connection that reaches the event router is always authenticated.

Failures raise AuthenticationError with the exact handshake error string
the web client matches on ("Authentication error: ...").
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from busnotify.auth.jwt import TokenError, TokenExpiredError, strip_bearer, verify_token
from busnotify.db.models import User
from busnotify.errors import AuthenticationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ConnectedUser:
    """Identity resolved at connect time; never changes for the connection."""

    user_id: str
    name: str
    role: str
    selected_route_id: Optional[str] = None


def extract_token(environ: Optional[dict[str, Any]], auth: Any = None) -> Optional[str]:
    """Pull the bearer token out of a socket.io handshake.

    Handles python-socketio environ shapes across ASGI/WSGI servers.
    """
    if isinstance(auth, dict) and isinstance(auth.get("token"), str):
        token = strip_bearer(auth["token"])
        if token:
            return token

    scope: Any = environ or {}
    if isinstance(scope, dict) and isinstance(scope.get("asgi.scope"), dict):
        scope = scope["asgi.scope"]

    query_string: str | bytes = ""
    if isinstance(scope, dict):
        query_string = scope.get("query_string") or scope.get("QUERY_STRING") or ""
    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    return strip_bearer(token)


class ConnectionAuthenticator:
    """Verify a handshake token and load the user it names."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def authenticate(
        self, environ: Optional[dict[str, Any]] = None, auth: Any = None
    ) -> ConnectedUser:
        token = extract_token(environ, auth)
        if not token:
            raise AuthenticationError("Authentication error: Token missing")

        try:
            payload = verify_token(token)
            user_id = uuid.UUID(str(payload["sub"]))
        except TokenExpiredError:
            raise AuthenticationError("Authentication error: Token expired")
        except (TokenError, ValueError) as e:
            logger.info("realtime.auth_rejected", reason=str(e))
            raise AuthenticationError("Authentication error: Invalid token")

        async with self._session_factory() as db:
            user = await db.get(User, user_id)

        if user is None:
            raise AuthenticationError("Authentication error: User not found")

        selected_route = None
        if user.role == "student" and user.selected_route_id:
            selected_route = str(user.selected_route_id)

        return ConnectedUser(
            user_id=str(user.id),
            name=user.name,
            role=user.role,
            selected_route_id=selected_route,
        )
