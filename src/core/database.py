"""
Async engine, session factory and the post-commit hook registry.

Services never commit: they ``flush()`` and queue side effects that must only
happen once the data is durable (notifications, deadline timers) with
``after_commit``.  Whoever owns the session -- the ``get_db`` request
dependency or ``session_scope`` for background work -- commits and then runs
the queued hooks.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

SessionFactory = async_sessionmaker[AsyncSession]


# ---------------------------------------------------------------------------
# Post-commit hooks
# ---------------------------------------------------------------------------

_AFTER_COMMIT_KEY = "after_commit_hooks"

AfterCommitHook = Callable[[], Optional[Awaitable[Any]]]


def after_commit(session: AsyncSession, hook: AfterCommitHook) -> None:
    """Queue ``hook`` to run once ``session`` has committed successfully."""
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append(hook)


def discard_after_commit(session: AsyncSession) -> int:
    """Drop queued hooks (the transaction rolled back). Returns how many."""
    hooks = session.info.pop(_AFTER_COMMIT_KEY, [])
    return len(hooks)


async def run_after_commit(session: AsyncSession) -> None:
    """Run every queued hook in order.

    A failing hook is logged and the remaining hooks still run: the data is
    already committed and nothing here may undo it.
    """
    hooks = session.info.pop(_AFTER_COMMIT_KEY, [])
    for hook in hooks:
        try:
            result = hook()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Post-commit hook %r failed", hook)


@asynccontextmanager
async def session_scope(
    factory: SessionFactory | None = None,
) -> AsyncIterator[AsyncSession]:
    """Unit of work for code running outside a request (timers, jobs, CLI).

    Commits on success, rolls back on any exception, and runs post-commit
    hooks only after a successful commit.
    """
    factory = factory or async_session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            dropped = discard_after_commit(session)
            if dropped:
                logger.debug("Discarded %d post-commit hooks after rollback", dropped)
            raise
        await run_after_commit(session)
