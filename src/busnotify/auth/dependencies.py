"""FastAPI auth dependencies.

Used as Depends() in route handlers to extract and validate the current
user from the Authorization header. Roles are plain strings on the user
row; the only gate the API needs is "is this an admin".
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from busnotify.auth.jwt import TokenError, strip_bearer, verify_token
from busnotify.db.engine import get_db
from busnotify.db.models import User


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(
        self,
        user_id: str,
        name: str = "",
        role: str = "student",
        selected_route_id: Optional[str] = None,
    ):
        self.user_id = user_id
        self.name = name
        self.role = role
        self.selected_route_id = selected_route_id

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_user(cls, user: User) -> "CurrentIdentity":
        return cls(
            user_id=str(user.id),
            name=user.name,
            role=user.role,
            selected_route_id=str(user.selected_route_id) if user.selected_route_id else None,
        )


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentity:
    """Resolve the bearer token to a user (401 if missing or invalid)."""
    token = strip_bearer(authorization)
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_token(token)
        user_id = uuid.UUID(payload["sub"])
    except (TokenError, ValueError) as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return CurrentIdentity.from_user(user)


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Admin-only routes (403 for students and drivers)."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
