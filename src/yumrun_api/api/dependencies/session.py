"""Session-aware dependencies resolving the calling user."""

from __future__ import annotations

from typing import Callable
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from yumrun_api.core.errors import AuthenticationError, NotFoundError, ValidationError
from yumrun_api.db.session import get_session
from yumrun_api.models.user import User
from yumrun_api.services.auth import Capability, ensure_capability


async def require_session_user(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from the forwarded session header."""

    if not session_user:
        raise AuthenticationError("Missing session user context")

    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise ValidationError("Invalid session user identifier") from error

    stmt = select(User).where(User.id == user_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("Session user not found")

    return user


def require_capability(capability: Capability) -> Callable[..., object]:
    """Dependency factory: the session user must hold ``capability``."""

    async def dependency(user: User = Depends(require_session_user)) -> User:
        ensure_capability(user, capability)
        return user

    return dependency
