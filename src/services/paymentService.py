"""
Payment Service
===============

Technicians submit the customer payment they collected; dispatch verifies
or rejects it. Approval hands off to the compensation ledger, which records
the earning and moves the work order to PAID_VERIFIED in the same
transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import utcnow
from src.core.exceptions import (
    Forbidden,
    InvalidTransition,
    NotAssignedToYou,
    PaymentAlreadyProcessed,
    PaymentNotFound,
    ValidationFailed,
)
from src.core.money import ZERO, round2
from src.models.ledger import Commission
from src.models.payment import Payment, PaymentMethod, PaymentStatus
from src.models.work_order import WorkOrderStatus
from src.services import auditService, compensationLedger, notificationService, workOrderService
from src.services.compensationLedger import ReviewAction
from src.services.workOrderStateMachine import Actor, ActorType, validate_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    payment: Payment
    commission: Optional[Commission] = None
    wallet_balance: Optional[Decimal] = None
    created: bool = False
    note: Optional[str] = None


async def get_payment(db: AsyncSession, payment_id: int) -> Payment:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFound(payment_id)
    return payment


async def list_payments(
    db: AsyncSession,
    *,
    status: Optional[PaymentStatus] = None,
    work_order_id: Optional[int] = None,
) -> Sequence[Payment]:
    stmt = select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc())
    if status is not None:
        stmt = stmt.where(Payment.status == status)
    if work_order_id is not None:
        stmt = stmt.where(Payment.wo_id == work_order_id)
    result = await db.execute(stmt)
    return result.scalars().all()


async def submit_payment(
    db: AsyncSession,
    actor: Actor,
    work_order_id: int,
    *,
    amount: Decimal,
    method: PaymentMethod,
    transaction_ref: Optional[str] = None,
) -> Payment:
    """Record a collected payment awaiting dispatch verification."""
    amount = round2(amount)
    if amount <= ZERO:
        raise ValidationFailed(f"Payment amount must be positive, got {amount}.")

    wo = await workOrderService.get_work_order(db, work_order_id)
    if actor.actor_type != ActorType.TECHNICIAN or wo.technician_id != actor.id:
        raise NotAssignedToYou(wo.id, actor.id)
    if wo.status != WorkOrderStatus.COMPLETED_PENDING_PAYMENT:
        raise InvalidTransition(
            f"Payment can only be submitted for a work order in "
            f"{WorkOrderStatus.COMPLETED_PENDING_PAYMENT.value}, not {wo.status.value}."
        )

    pending = (
        await db.execute(
            select(Payment.id).where(
                Payment.wo_id == wo.id,
                Payment.status.in_([PaymentStatus.PENDING_VERIFICATION, PaymentStatus.VERIFIED]),
            )
        )
    ).first()
    if pending is not None:
        raise PaymentAlreadyProcessed(pending[0], "already submitted")

    payment = Payment(
        wo_id=wo.id,
        technician_id=actor.id,
        amount=amount,
        method=method,
        transaction_ref=transaction_ref,
        status=PaymentStatus.PENDING_VERIFICATION,
    )
    db.add(payment)
    await db.flush()

    auditService.record(
        db,
        action="PAYMENT_SUBMITTED",
        entity_type="Payment",
        entity_id=payment.id,
        user_id=actor.id,
        metadata={"wo_id": wo.id, "amount": str(amount), "method": method.value},
    )
    logger.info("Payment submitted: wo=%s amount=%s method=%s", wo.id, amount, method.value)
    return payment


async def verify_payment(
    db: AsyncSession,
    payment_id: int,
    action: ReviewAction,
    actor: Actor,
    *,
    reason: Optional[str] = None,
) -> VerificationResult:
    """APPROVE runs the ledger; REJECT records the reason and leaves the
    work order awaiting a new payment.
    """
    check = validate_transition(
        WorkOrderStatus.COMPLETED_PENDING_PAYMENT, WorkOrderStatus.PAID_VERIFIED, actor.actor_type,
    )
    if not check.allowed:
        raise Forbidden(check.reason or "Not allowed to verify payments.")

    payment = await get_payment(db, payment_id)

    if action == ReviewAction.APPROVE:
        outcome = await compensationLedger.on_payment_verified(
            db, payment.wo_id, payment.id, actor,
        )
        await db.refresh(payment)
        return VerificationResult(
            payment=payment,
            commission=outcome.commission,
            wallet_balance=outcome.wallet_balance,
            created=outcome.created,
            note=outcome.note,
        )

    if payment.status != PaymentStatus.PENDING_VERIFICATION:
        raise PaymentAlreadyProcessed(payment.id, payment.status.value)

    payment.status = PaymentStatus.REJECTED
    payment.rejected_reason = reason
    payment.verified_by_id = actor.id
    payment.verified_at = utcnow()
    await db.flush()

    auditService.record(
        db,
        action="PAYMENT_REJECTED",
        entity_type="Payment",
        entity_id=payment.id,
        user_id=actor.id,
        metadata={"wo_id": payment.wo_id, "reason": reason},
    )
    notificationService.notify_payment_rejected(db, payment.technician_id, payment.id, reason)
    logger.info("Payment %s rejected: %s", payment.id, reason)
    return VerificationResult(payment=payment)
