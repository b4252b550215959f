"""
E2E test fixtures for the dispatch backend.

Provides:
- A throwaway SQLite database (aiosqlite) per test, schema from the models
- A deadline scheduler on a fake clock, with timers switched off so tests
  drive expiry explicitly through ``handle_expiry`` / ``reconcile``
- A recording notification gateway in place of the stored one
- Seed data: back-office staff, customers and technicians with rates
- An in-process FastAPI app and httpx AsyncClient (ASGI transport)
- Helpers that drive a work order through its lifecycle via the services

Every unit of work goes through ``session_scope``, so post-commit hooks
(deadline registration, notifications) run exactly as in production.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.database import SessionFactory, session_scope
from src.models import (
    Base,
    EmploymentType,
    NotificationType,
    PaymentMethod,
    SystemConfig,
    TechnicianProfile,
    User,
    UserRole,
)
from src.services import deadlineScheduler, notificationService, paymentService, workOrderService
from src.services.compensationLedger import ReviewAction
from src.services.deadlineScheduler import ResponseDeadlineScheduler
from src.services.tokenService import create_access_token
from src.services.workOrderService import RespondAction
from src.services.workOrderStateMachine import Actor

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

ADMIN_ID = 1
DISPATCHER_ID = 2
CUSTOMER_ID = 3
FREELANCER_ID = 4
INTERNAL_ID = 5
BLOCKED_TECH_ID = 6
SECOND_FREELANCER_ID = 7
OTHER_CUSTOMER_ID = 8

ADMIN = Actor(ADMIN_ID, UserRole.ADMIN)
DISPATCHER = Actor(DISPATCHER_ID, UserRole.DISPATCHER)
CUSTOMER = Actor(CUSTOMER_ID, UserRole.CUSTOMER)
OTHER_CUSTOMER = Actor(OTHER_CUSTOMER_ID, UserRole.CUSTOMER)
FREELANCER = Actor(FREELANCER_ID, UserRole.TECH_FREELANCER)
INTERNAL = Actor(INTERNAL_ID, UserRole.TECH_INTERNAL)
SECOND_FREELANCER = Actor(SECOND_FREELANCER_ID, UserRole.TECH_FREELANCER)

# Freelancer: custom 10%.  Internal: system config bonus 3%.
# Second freelancer: no profile, system config commission 5%.
FREELANCER_RATE = Decimal("0.1000")
INTERNAL_RATE = Decimal("0.0300")
SYSTEM_COMMISSION_RATE = Decimal("0.0500")

SITE_LAT = Decimal("43.6532168")
SITE_LNG = Decimal("-79.3831523")


# ---------------------------------------------------------------------------
# Async engine + session factory (SQLite file per test)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    """A fresh database per test. A file, not ``:memory:``, so that
    concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}", echo=False)

    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> SessionFactory:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Scheduler and notification gateway
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def scheduler(session_factory, clock) -> AsyncGenerator[ResponseDeadlineScheduler, None]:
    """Process-wide scheduler on the fake clock; timers stay unarmed."""
    instance = ResponseDeadlineScheduler(
        session_factory,
        clock=clock,
        retry_backoff_seconds=0,
        start_timers=False,
    )
    previous = deadlineScheduler.set_scheduler(instance)
    yield instance
    await instance.shutdown()
    deadlineScheduler.set_scheduler(previous)


@dataclass
class SentNotification:
    user_id: int
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any]


class RecordingGateway:
    """Notification gateway that keeps everything it is asked to send."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    async def send(self, user_id, notification_type, title, message, data) -> None:
        self.sent.append(SentNotification(user_id, notification_type, title, message, data))

    def types_for(self, user_id: int) -> list[NotificationType]:
        return [n.type for n in self.sent if n.user_id == user_id]


@pytest.fixture(autouse=True)
def gateway() -> RecordingGateway:
    recording = RecordingGateway()
    previous = notificationService.set_gateway(recording)
    yield recording
    notificationService.set_gateway(previous)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def _seed_data(db: AsyncSession) -> None:
    """Insert minimum seed data for E2E tests."""
    db.add_all([
        User(id=ADMIN_ID, name="Ada Admin", phone="+10000000001", role=UserRole.ADMIN),
        User(id=DISPATCHER_ID, name="Dana Dispatcher", phone="+10000000002", role=UserRole.DISPATCHER),
        User(id=CUSTOMER_ID, name="Casey Customer", phone="+10000000003", role=UserRole.CUSTOMER),
        User(id=FREELANCER_ID, name="Frankie Freelancer", phone="+10000000004", role=UserRole.TECH_FREELANCER),
        User(id=INTERNAL_ID, name="Ira Internal", phone="+10000000005", role=UserRole.TECH_INTERNAL),
        User(
            id=BLOCKED_TECH_ID,
            name="Blake Blocked",
            phone="+10000000006",
            role=UserRole.TECH_FREELANCER,
            is_blocked=True,
        ),
        User(id=SECOND_FREELANCER_ID, name="Sam Second", phone="+10000000007", role=UserRole.TECH_FREELANCER),
        User(id=OTHER_CUSTOMER_ID, name="Olive Other", phone="+10000000008", role=UserRole.CUSTOMER),
    ])
    await db.flush()

    db.add_all([
        TechnicianProfile(
            user_id=FREELANCER_ID,
            employment_type=EmploymentType.FREELANCER,
            use_custom_rate=True,
            commission_rate=FREELANCER_RATE,
        ),
        TechnicianProfile(
            user_id=INTERNAL_ID,
            employment_type=EmploymentType.INTERNAL,
            use_custom_rate=False,
            bonus_rate=Decimal("0.2000"),
        ),
        SystemConfig(
            freelancer_commission_rate=SYSTEM_COMMISSION_RATE,
            internal_employee_bonus_rate=INTERNAL_RATE,
        ),
    ])
    await db.flush()


@pytest_asyncio.fixture
async def seeded(session_factory, scheduler) -> SessionFactory:
    """Session factory over a database with seed data already committed."""
    async with session_scope(session_factory) as db:
        await _seed_data(db)
    return session_factory


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(session_factory: SessionFactory):
    """Build a FastAPI app with all routes registered and the DB dependency
    overridden to use the test database."""
    from fastapi import FastAPI

    from src.api.deps import get_db
    from src.api.routes.deadlines import router as deadlines_router
    from src.api.routes.payments import router as payments_router
    from src.api.routes.payouts import router as payouts_router
    from src.api.routes.rates import router as rates_router
    from src.api.routes.wallets import router as wallets_router
    from src.api.routes.work_orders import router as work_orders_router
    from src.core.database import discard_after_commit, run_after_commit

    app = FastAPI(title="Dispatch Test")

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                discard_after_commit(session)
                raise
            await run_after_commit(session)

    app.dependency_overrides[get_db] = _override_get_db

    app.include_router(work_orders_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(payouts_router, prefix="/api/v1")
    app.include_router(rates_router, prefix="/api/v1")
    app.include_router(wallets_router, prefix="/api/v1")
    app.include_router(deadlines_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(seeded: SessionFactory) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(seeded)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers(actor: Actor) -> dict[str, str]:
    token, _ = create_access_token(actor.id, actor.role)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Helpers: drive work orders through the services
# ---------------------------------------------------------------------------

async def create_assigned(
    factory: SessionFactory,
    technician: Actor = FREELANCER,
    *,
    customer_id: int = CUSTOMER_ID,
    response_minutes: Optional[int] = None,
) -> int:
    """Create a work order assigned to ``technician``; returns its id."""
    async with session_scope(factory) as db:
        result = await workOrderService.create_work_order(
            db,
            DISPATCHER,
            customer_id=customer_id,
            technician_id=technician.id,
            address="100 Queen St W, Toronto, ON",
            response_minutes=response_minutes,
        )
        return result.work_order.id


async def create_completed(factory: SessionFactory, technician: Actor = FREELANCER) -> int:
    """Create, accept, start and complete a work order; returns its id."""
    wo_id = await create_assigned(factory, technician)
    async with session_scope(factory) as db:
        await workOrderService.respond(db, wo_id, technician, RespondAction.ACCEPT)
    async with session_scope(factory) as db:
        await workOrderService.start(db, wo_id, technician, latitude=SITE_LAT, longitude=SITE_LNG)
    async with session_scope(factory) as db:
        await workOrderService.complete(db, wo_id, technician, notes="Replaced valve")
    return wo_id


async def submit_payment(
    factory: SessionFactory, wo_id: int, technician: Actor, amount: Decimal,
) -> int:
    async with session_scope(factory) as db:
        payment = await paymentService.submit_payment(
            db, technician, wo_id, amount=amount, method=PaymentMethod.CASH,
        )
        return payment.id


async def create_paid(
    factory: SessionFactory, technician: Actor = FREELANCER, amount: Decimal = Decimal("1000.00"),
) -> tuple[int, int]:
    """Drive a work order to PAID_VERIFIED; returns (work order id, payment id)."""
    wo_id = await create_completed(factory, technician)
    payment_id = await submit_payment(factory, wo_id, technician, amount)
    async with session_scope(factory) as db:
        await paymentService.verify_payment(db, payment_id, ReviewAction.APPROVE, DISPATCHER)
    return wo_id, payment_id
