"""
Shared pytest fixtures for dispatch backend unit tests.

Provides a mock database session, a controllable clock and sample actors
that mirror production objects without requiring a live database.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.user import UserRole
from src.services.workOrderStateMachine import Actor


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


# Monday morning, so weekly batches land on the following Monday.
CLOCK_START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()`` and
    ``db.commit()`` out of the box.  Individual tests can configure
    ``mock_db.execute.return_value`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.info = {}
    return session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(CLOCK_START)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture
def dispatcher_actor() -> Actor:
    return Actor(id=2, role=UserRole.DISPATCHER)


@pytest.fixture
def technician_actor() -> Actor:
    return Actor(id=4, role=UserRole.TECH_FREELANCER)


@pytest.fixture
def customer_actor() -> Actor:
    return Actor(id=3, role=UserRole.CUSTOMER)
