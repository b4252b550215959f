"""
Payout Batch Processor
======================

Thin orchestration over the compensation ledger's batch operations:

  - run_weekly_cycle   -- create the weekly batch, then settle each payout
                          in its own transaction so one integrity alarm
                          does not hold back everybody else's payout
  - mark_batch_paid    -- out-of-band settlement (bank transfer confirmed
                          externally) with an operator payment reference
  - settle_technician  -- same, for a technician with no scheduled batch
  - admin views: payout summary and payout / request / commission lists
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import utcnow
from src.core.database import SessionFactory, session_scope
from src.core.exceptions import DispatchError, NoPendingCommissions
from src.core.money import ZERO, round2
from src.models.ledger import (
    Commission,
    CommissionStatus,
    CommissionType,
    Payout,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutStatus,
    PayoutType,
)
from src.services import compensationLedger
from src.services.compensationLedger import PayoutSettlement, WeeklyBatch
from src.services.workOrderStateMachine import Actor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeeklyCycleReport:
    batch: WeeklyBatch
    completed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PayoutSummary:
    pending_commission_amount: Decimal
    pending_commission_count: int
    pending_request_amount: Decimal
    pending_request_count: int
    next_payout_date: date
    completed_this_month: Decimal


# ---------------------------------------------------------------------------
# Batch orchestration
# ---------------------------------------------------------------------------

async def run_weekly_cycle(
    actor: Actor,
    *,
    session_factory: SessionFactory | None = None,
    process: bool = True,
    today: Optional[date] = None,
) -> WeeklyCycleReport:
    """Create this week's batch and, unless ``process`` is False, settle it."""
    async with session_scope(session_factory) as db:
        batch = await compensationLedger.create_weekly_batch(db, actor, today=today)

    report = WeeklyCycleReport(batch=batch)
    if not process:
        return report

    for payout in batch.payouts:
        try:
            async with session_scope(session_factory) as db:
                await compensationLedger.process_batch(db, payout.id, actor)
        except DispatchError as exc:
            logger.error("Payout %s not settled: %s", payout.id, exc)
            report.failed[payout.id] = exc.message
        else:
            report.completed.append(payout.id)

    logger.info(
        "Weekly payout cycle: %d created, %d completed, %d failed",
        len(batch.payouts),
        len(report.completed),
        len(report.failed),
    )
    return report


async def process_batch(db: AsyncSession, payout_id: int, actor: Actor) -> PayoutSettlement:
    return await compensationLedger.process_batch(db, payout_id, actor)


async def mark_batch_paid(
    db: AsyncSession,
    payout_id: int,
    actor: Actor,
    *,
    payment_reference: str,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> PayoutSettlement:
    """Record an externally confirmed settlement for any uncompleted payout."""
    payout = await compensationLedger.get_payout(db, payout_id)
    settlement = await compensationLedger.settle_payout(
        db,
        payout,
        actor,
        payment_reference=payment_reference,
        payment_method=payment_method,
        notes=notes,
    )
    logger.info("Payout %s marked paid (reference=%s)", payout_id, payment_reference)
    return settlement


async def settle_technician(
    db: AsyncSession,
    technician_id: int,
    actor: Actor,
    *,
    payment_reference: str,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> PayoutSettlement:
    """Pay out every unreserved EARNED commission of one technician now."""
    payout = await compensationLedger.create_payout_from_earned(
        db, technician_id, PayoutType.ON_DEMAND, created_by_id=actor.id,
    )
    if payout is None:
        raise NoPendingCommissions(technician_id)
    return await compensationLedger.settle_payout(
        db,
        payout,
        actor,
        payment_reference=payment_reference,
        payment_method=payment_method,
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

async def get_payout_summary(db: AsyncSession, *, now: Optional[datetime] = None) -> PayoutSummary:
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    pending_commissions = (
        await db.execute(
            select(func.count(Commission.id), func.coalesce(func.sum(Commission.amount), 0)).where(
                Commission.status == CommissionStatus.EARNED,
                Commission.payout_id.is_(None),
            )
        )
    ).one()
    pending_requests = (
        await db.execute(
            select(func.count(PayoutRequest.id), func.coalesce(func.sum(PayoutRequest.amount), 0)).where(
                PayoutRequest.status == PayoutRequestStatus.PENDING,
            )
        )
    ).one()
    completed = (
        await db.execute(
            select(func.coalesce(func.sum(Payout.total_amount), 0)).where(
                Payout.status == PayoutStatus.COMPLETED,
                Payout.processed_at >= month_start,
            )
        )
    ).scalar_one()

    return PayoutSummary(
        pending_commission_amount=round2(pending_commissions[1]),
        pending_commission_count=pending_commissions[0],
        pending_request_amount=round2(pending_requests[1]),
        pending_request_count=pending_requests[0],
        next_payout_date=compensationLedger.next_payout_date(now.date()),
        completed_this_month=round2(completed) if completed else ZERO,
    )


async def list_payouts(
    db: AsyncSession,
    *,
    status: Optional[PayoutStatus] = None,
    payout_type: Optional[PayoutType] = None,
    technician_id: Optional[int] = None,
) -> Sequence[Payout]:
    stmt = select(Payout).order_by(Payout.created_at.desc(), Payout.id.desc())
    if status is not None:
        stmt = stmt.where(Payout.status == status)
    if payout_type is not None:
        stmt = stmt.where(Payout.type == payout_type)
    if technician_id is not None:
        stmt = stmt.where(Payout.technician_id == technician_id)
    return (await db.execute(stmt)).scalars().all()


async def list_payout_requests(
    db: AsyncSession,
    *,
    status: Optional[PayoutRequestStatus] = None,
    technician_id: Optional[int] = None,
) -> Sequence[PayoutRequest]:
    stmt = select(PayoutRequest).order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
    if status is not None:
        stmt = stmt.where(PayoutRequest.status == status)
    if technician_id is not None:
        stmt = stmt.where(PayoutRequest.technician_id == technician_id)
    return (await db.execute(stmt)).scalars().all()


async def list_pending_commissions(
    db: AsyncSession,
    *,
    commission_type: Optional[CommissionType] = None,
) -> Sequence[Commission]:
    stmt = (
        select(Commission)
        .where(Commission.status == CommissionStatus.EARNED, Commission.payout_id.is_(None))
        .order_by(Commission.technician_id, Commission.created_at, Commission.id)
    )
    if commission_type is not None:
        stmt = stmt.where(Commission.type == commission_type)
    return (await db.execute(stmt)).scalars().all()
