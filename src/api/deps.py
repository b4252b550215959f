"""
Shared FastAPI dependencies.

Provides the request-scoped database session (commit, then post-commit
hooks) and the authenticated actor decoded from the Bearer token.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import async_session_factory, discard_after_commit, run_after_commit
from src.models.user import User
from src.services import tokenService
from src.services.workOrderStateMachine import Actor, ActorType


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits when the request succeeds.

    Notifications and deadline timers queued with ``after_commit`` run only
    once the commit went through; on any error the session rolls back and
    the queue is dropped.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_after_commit(session)
            raise
        await run_after_commit(session)


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    db: DBSession,
) -> User:
    """Return the ``User`` named by the Bearer token, or 401."""
    try:
        user = await tokenService.get_current_user(db, credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.is_blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is blocked.",
        )
    return user


async def get_current_actor(user: Annotated[User, Depends(get_current_user)]) -> Actor:
    return Actor(id=user.id, role=user.role)


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]


# ---------------------------------------------------------------------------
# Role checks
# ---------------------------------------------------------------------------

_BACK_OFFICE = (ActorType.DISPATCHER, ActorType.ADMIN)


def require_back_office(actor: Actor) -> None:
    """403 unless the caller is dispatch or admin."""
    if actor.actor_type not in _BACK_OFFICE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only dispatchers and admins may perform this action.",
        )


def require_self_or_back_office(actor: Actor, technician_id: int) -> None:
    """403 unless the caller is that technician, dispatch or admin."""
    if actor.actor_type in _BACK_OFFICE:
        return
    if actor.actor_type == ActorType.TECHNICIAN and actor.id == technician_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You can only view your own earnings.",
    )
