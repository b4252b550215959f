"""
Compensation Ledger
===================

Turns verified payments into commissions/bonuses, keeps each technician's
wallet balance, and settles payouts.

Rules enforced here:

  - ``Wallet.balance`` changes only through ``_apply_wallet_entry``, which
    updates the balance atomically in SQL and appends the matching
    ``WalletTransaction`` in the same transaction.  Debits are conditional
    on the balance covering them.
  - At most one ``Commission`` per work order: an application check plus the
    unique ``wo_id`` constraint; a duplicate verification returns the
    existing record instead of crediting twice.
  - Every amount is rounded to cents right after each multiplication or
    addition.
  - Callers own the transaction: nothing here commits.

Key functions:
  - on_payment_verified   -- commission + wallet credit + PAID_VERIFIED
  - request_early_payout / review_payout_request
  - create_weekly_batch   -- reserve EARNED commissions into SCHEDULED payouts
  - process_batch / settle_payout -- complete a payout and debit the wallet
  - get_earnings_summary / get_wallet_view / audit_wallet
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import utcnow
from src.core.config import settings
from src.core.exceptions import (
    InsufficientBalance,
    InvalidCommissionAmount,
    InvalidPayoutAmount,
    InvalidTransition,
    LedgerInconsistency,
    PaymentAlreadyProcessed,
    PaymentNotFound,
    PayoutAlreadyProcessed,
    PayoutNotFound,
    PayoutRequestAlreadyReviewed,
    PayoutRequestNotFound,
    TechnicianNotFound,
    ValidationFailed,
)
from src.core.money import ZERO, round2, sum_rounded, to_decimal
from src.events.ledgerEvents import (
    emit_commission_earned,
    emit_payout_batch_created,
    emit_payout_completed,
    emit_wallet_credited,
    emit_wallet_debited,
)
from src.models.ledger import (
    Commission,
    CommissionStatus,
    CommissionType,
    Payout,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutStatus,
    PayoutType,
    TransactionSource,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from src.models.payment import Payment, PaymentStatus
from src.models.rates import RateType
from src.models.user import User
from src.models.work_order import WorkOrderStatus
from src.services import auditService, notificationService, workOrderService
from src.services.rateResolver import load_rate
from src.services.workOrderStateMachine import Actor

logger = logging.getLogger(__name__)


class ReviewAction(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommissionOutcome:
    commission: Commission
    wallet_balance: Decimal
    created: bool
    note: Optional[str] = None


@dataclass(frozen=True)
class PayoutReview:
    request: PayoutRequest
    payout: Optional[Payout] = None
    transaction: Optional[WalletTransaction] = None
    linked_commissions: Sequence[Commission] = ()


@dataclass(frozen=True)
class WeeklyBatch:
    payouts: Sequence[Payout]
    scheduled_for: date
    total_amount: Decimal
    commission_count: int


@dataclass(frozen=True)
class PayoutSettlement:
    payout: Payout
    transaction: Optional[WalletTransaction]
    commissions: Sequence[Commission]
    wallet_balance: Decimal


@dataclass(frozen=True)
class EarningsSummary:
    technician_id: int
    commissions: Sequence[Commission]
    total: Decimal
    earned: Decimal
    pending_payout: Decimal
    paid: Decimal
    wallet_balance: Decimal


@dataclass(frozen=True)
class WalletView:
    technician_id: int
    balance: Decimal
    transactions: Sequence[WalletTransaction] = field(default_factory=list)


@dataclass(frozen=True)
class WalletAudit:
    technician_id: int
    balance: Decimal
    ledger_sum: Decimal

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


# ---------------------------------------------------------------------------
# Wallet primitives
# ---------------------------------------------------------------------------

async def get_wallet(db: AsyncSession, technician_id: int) -> Optional[Wallet]:
    result = await db.execute(select(Wallet).where(Wallet.technician_id == technician_id))
    return result.scalar_one_or_none()


async def get_or_create_wallet(db: AsyncSession, technician_id: int) -> Wallet:
    wallet = await get_wallet(db, technician_id)
    if wallet is None:
        wallet = Wallet(technician_id=technician_id, balance=ZERO)
        db.add(wallet)
        await db.flush()
        logger.info("Wallet created for technician %s", technician_id)
    return wallet


async def reserved_amount(db: AsyncSession, technician_id: int) -> Decimal:
    """Sum of the technician's SCHEDULED payouts, which their wallet must still cover."""
    result = await db.execute(
        select(func.coalesce(func.sum(Payout.total_amount), 0)).where(
            Payout.technician_id == technician_id,
            Payout.status == PayoutStatus.SCHEDULED,
        )
    )
    return round2(result.scalar_one())


async def _check_spendable(
    db: AsyncSession, technician_id: int, wallet: Optional[Wallet], amount: Decimal,
) -> Decimal:
    """Raise unless ``amount`` fits in the balance not held by scheduled payouts."""
    balance = round2(wallet.balance) if wallet else ZERO
    reserved = await reserved_amount(db, technician_id)
    available = max(round2(balance - reserved), ZERO)
    if wallet is None or available < amount:
        raise InsufficientBalance(amount, available, balance=balance, reserved=reserved)
    return available


async def _apply_wallet_entry(
    db: AsyncSession,
    wallet: Wallet,
    txn_type: TransactionType,
    amount: Decimal,
    *,
    source_type: TransactionSource,
    source_id: Optional[int],
    description: str,
) -> WalletTransaction:
    """The only place a wallet balance is written."""
    amount = round2(amount)
    if amount < ZERO or (txn_type == TransactionType.DEBIT and amount == ZERO):
        raise InvalidPayoutAmount(f"Wallet {txn_type.value.lower()} amount must be positive, got {amount}.")

    await db.flush()
    if txn_type == TransactionType.CREDIT:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount)
        )
    else:
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet.id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount)
        )
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.refresh(wallet)
    if result.rowcount != 1:
        raise InsufficientBalance(amount, round2(wallet.balance))

    txn = WalletTransaction(
        wallet_id=wallet.id,
        technician_id=wallet.technician_id,
        type=txn_type,
        source_type=source_type,
        source_id=source_id,
        amount=amount,
        description=description,
    )
    db.add(txn)
    await db.flush()

    balance = round2(wallet.balance)
    if txn_type == TransactionType.CREDIT:
        emit_wallet_credited(wallet.technician_id, amount, balance, source_type.value)
    else:
        emit_wallet_debited(wallet.technician_id, amount, balance, source_type.value)
    return txn


async def audit_wallet(db: AsyncSession, technician_id: int) -> WalletAudit:
    """Compare the stored balance with the sum of its transactions."""
    wallet = await get_wallet(db, technician_id)
    if wallet is None:
        return WalletAudit(technician_id, ZERO, ZERO)
    result = await db.execute(
        select(WalletTransaction).where(WalletTransaction.wallet_id == wallet.id)
    )
    ledger_sum = sum_rounded(t.signed_amount for t in result.scalars())
    return WalletAudit(technician_id, round2(wallet.balance), ledger_sum)


# ---------------------------------------------------------------------------
# Payment verification
# ---------------------------------------------------------------------------

async def _commission_for(db: AsyncSession, work_order_id: int) -> Optional[Commission]:
    result = await db.execute(select(Commission).where(Commission.wo_id == work_order_id))
    return result.scalar_one_or_none()


async def _existing_outcome(
    db: AsyncSession, commission: Commission, work_order_id: int,
) -> CommissionOutcome:
    wallet = await get_wallet(db, commission.technician_id)
    note = f"commission already recorded for work order {work_order_id}"
    logger.info("Payment verification skipped: %s (commission %s)", note, commission.id)
    return CommissionOutcome(
        commission=commission,
        wallet_balance=round2(wallet.balance) if wallet else ZERO,
        created=False,
        note=note,
    )


async def on_payment_verified(
    db: AsyncSession,
    work_order_id: int,
    payment_id: int,
    verifier: Actor,
) -> CommissionOutcome:
    """Record the earning for a verified payment and close the work order.

    Steps, all in the caller's transaction: idempotency check, rate
    resolution, commission, wallet credit, work order -> PAID_VERIFIED.
    """
    existing = await _commission_for(db, work_order_id)
    if existing is not None:
        return await _existing_outcome(db, existing, work_order_id)

    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise PaymentNotFound(payment_id)
    if payment.wo_id != work_order_id:
        raise ValidationFailed(
            f"Payment '{payment_id}' belongs to work order '{payment.wo_id}', not '{work_order_id}'."
        )
    if payment.status != PaymentStatus.PENDING_VERIFICATION:
        raise PaymentAlreadyProcessed(payment_id, payment.status.value)

    wo = await workOrderService.get_work_order(db, work_order_id)
    if wo.status != WorkOrderStatus.COMPLETED_PENDING_PAYMENT:
        raise InvalidTransition(
            f"Work order '{wo.id}' is {wo.status.value}; payment can only be verified "
            f"in {WorkOrderStatus.COMPLETED_PENDING_PAYMENT.value}."
        )

    technician = await db.get(User, wo.technician_id)
    if technician is None:
        raise TechnicianNotFound(wo.technician_id)

    paid_amount = to_decimal(payment.amount)
    if not paid_amount.is_finite() or paid_amount <= ZERO:
        raise InvalidCommissionAmount(
            f"Payment amount must be positive to earn a commission, got {paid_amount}."
        )

    resolution = await load_rate(db, technician)
    amount = round2(paid_amount * resolution.rate)
    if not amount.is_finite() or amount < ZERO:
        raise InvalidCommissionAmount(
            f"Computed commission {amount} for payment {paid_amount} at rate {resolution.rate} is invalid."
        )

    now = utcnow()
    payment.status = PaymentStatus.VERIFIED
    payment.verified_by_id = verifier.id
    payment.verified_at = now

    is_bonus = resolution.rate_type == RateType.BONUS
    commission = Commission(
        wo_id=work_order_id,
        technician_id=technician.id,
        type=CommissionType.BONUS if is_bonus else CommissionType.COMMISSION,
        rate=resolution.rate,
        amount=amount,
        status=CommissionStatus.EARNED,
        payment_id=payment.id,
    )
    try:
        async with db.begin_nested():
            db.add(commission)
            await db.flush()
    except IntegrityError:
        existing = await _commission_for(db, work_order_id)
        if existing is None:
            raise
        return await _existing_outcome(db, existing, work_order_id)

    wallet = await get_or_create_wallet(db, technician.id)
    await _apply_wallet_entry(
        db,
        wallet,
        TransactionType.CREDIT,
        amount,
        source_type=TransactionSource.BONUS if is_bonus else TransactionSource.COMMISSION,
        source_id=commission.id,
        description=f"{commission.type.value.title()} for work order {wo.wo_number}",
    )

    await workOrderService.mark_paid_verified(db, wo, verifier, now=now)

    auditService.record(
        db,
        action="PAYMENT_VERIFIED",
        entity_type="Payment",
        entity_id=payment.id,
        user_id=verifier.id,
        metadata={
            "wo_id": wo.id,
            "commission_id": commission.id,
            "rate": str(resolution.rate),
            "rate_source": resolution.source.value,
            "amount": str(amount),
        },
    )
    notificationService.notify_payment_verified(db, wo, payment.id, amount)
    emit_commission_earned(
        technician.id, commission.id, wo.id, commission.type.value, resolution.rate, amount,
    )
    logger.info(
        "Commission recorded: wo=%s technician=%s %s x %s = %s (%s)",
        wo.id,
        technician.id,
        paid_amount,
        resolution.rate,
        amount,
        resolution.source.value,
    )
    return CommissionOutcome(
        commission=commission,
        wallet_balance=round2(wallet.balance),
        created=True,
    )


# ---------------------------------------------------------------------------
# Early payouts
# ---------------------------------------------------------------------------

async def request_early_payout(
    db: AsyncSession,
    technician_id: int,
    amount: Decimal,
    *,
    payment_method: Optional[str] = None,
    reason: Optional[str] = None,
) -> PayoutRequest:
    amount = round2(amount)
    if amount <= ZERO:
        raise InvalidPayoutAmount(f"Payout amount must be positive, got {amount}.")

    wallet = await get_wallet(db, technician_id)
    available = await _check_spendable(db, technician_id, wallet, amount)

    request = PayoutRequest(
        technician_id=technician_id,
        amount=amount,
        status=PayoutRequestStatus.PENDING,
        reason=reason,
        payment_method=payment_method,
    )
    db.add(request)
    await db.flush()

    auditService.record(
        db,
        action="PAYOUT_REQUESTED",
        entity_type="PayoutRequest",
        entity_id=request.id,
        user_id=technician_id,
        metadata={"amount": str(amount), "available": str(available)},
    )
    logger.info("Early payout requested: technician=%s amount=%s", technician_id, amount)
    return request


async def _link_commissions(
    db: AsyncSession,
    technician_id: int,
    amount: Decimal,
    payout_id: int,
    now: datetime,
) -> list[Commission]:
    """Mark the oldest EARNED commissions PAID until ``amount`` is covered.

    Audit trail only; the wallet debit is authoritative. The last commission
    linked may cover more than what remains.
    """
    result = await db.execute(
        select(Commission)
        .where(
            Commission.technician_id == technician_id,
            Commission.status == CommissionStatus.EARNED,
            Commission.payout_id.is_(None),
        )
        .order_by(Commission.created_at, Commission.id)
    )
    linked: list[Commission] = []
    remaining = amount
    for commission in result.scalars():
        if remaining <= ZERO:
            break
        commission.status = CommissionStatus.PAID
        commission.payout_id = payout_id
        commission.paid_at = now
        remaining = round2(remaining - commission.amount)
        linked.append(commission)
    await db.flush()
    return linked


async def review_payout_request(
    db: AsyncSession,
    request_id: int,
    action: ReviewAction,
    reviewer: Actor,
    *,
    rejected_reason: Optional[str] = None,
) -> PayoutReview:
    request = await db.get(PayoutRequest, request_id)
    if request is None:
        raise PayoutRequestNotFound(request_id)
    if request.status != PayoutRequestStatus.PENDING:
        raise PayoutRequestAlreadyReviewed(request_id, request.status.value)

    now = utcnow()
    target = (
        PayoutRequestStatus.APPROVED
        if action == ReviewAction.APPROVE
        else PayoutRequestStatus.REJECTED
    )
    await db.flush()
    claimed = await db.execute(
        update(PayoutRequest)
        .where(PayoutRequest.id == request_id, PayoutRequest.status == PayoutRequestStatus.PENDING)
        .values(
            status=target,
            reviewed_by_id=reviewer.id,
            reviewed_at=now,
            rejected_reason=rejected_reason if action == ReviewAction.REJECT else None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(request)
    if claimed.rowcount != 1:
        raise PayoutRequestAlreadyReviewed(request_id, request.status.value)

    if action == ReviewAction.REJECT:
        auditService.record(
            db,
            action="PAYOUT_REQUEST_REJECTED",
            entity_type="PayoutRequest",
            entity_id=request.id,
            user_id=reviewer.id,
            metadata={"reason": rejected_reason},
        )
        notificationService.notify_payout_request_rejected(
            db, request.technician_id, request.id, rejected_reason,
        )
        logger.info("Early payout request %s rejected", request.id)
        return PayoutReview(request=request)

    amount = round2(request.amount)
    wallet = await get_wallet(db, request.technician_id)
    try:
        await _check_spendable(db, request.technician_id, wallet, amount)
    except InsufficientBalance as exc:
        logger.warning(
            "Early payout %s refused: requested %s, available %s (%s reserved)",
            request.id,
            amount,
            exc.available,
            exc.reserved,
        )
        raise

    payout = Payout(
        technician_id=request.technician_id,
        total_amount=amount,
        type=PayoutType.EARLY,
        status=PayoutStatus.COMPLETED,
        processed_at=now,
        payment_method=request.payment_method,
        created_by_id=reviewer.id,
        processed_by_id=reviewer.id,
    )
    db.add(payout)
    await db.flush()

    txn = await _apply_wallet_entry(
        db,
        wallet,
        TransactionType.DEBIT,
        amount,
        source_type=TransactionSource.PAYOUT,
        source_id=payout.id,
        description=f"Early payout (request {request.id})",
    )
    linked = await _link_commissions(db, request.technician_id, amount, payout.id, now)
    request.payout_id = payout.id
    await db.flush()

    auditService.record(
        db,
        action="PAYOUT_REQUEST_APPROVED",
        entity_type="PayoutRequest",
        entity_id=request.id,
        user_id=reviewer.id,
        metadata={
            "payout_id": payout.id,
            "amount": str(amount),
            "linked_commissions": [c.id for c in linked],
        },
    )
    notificationService.notify_commission_paid(db, request.technician_id, payout.id, amount)
    emit_payout_completed(request.technician_id, payout.id, payout.type.value, amount)
    logger.info(
        "Early payout %s approved: technician=%s amount=%s linked=%d",
        payout.id,
        request.technician_id,
        amount,
        len(linked),
    )
    return PayoutReview(request=request, payout=payout, transaction=txn, linked_commissions=linked)


# ---------------------------------------------------------------------------
# Weekly batches
# ---------------------------------------------------------------------------

def next_payout_date(today: date, weekday: int | None = None) -> date:
    """The next ``weekday`` strictly after ``today`` (0 = Monday)."""
    weekday = settings.payout_weekday if weekday is None else weekday
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


async def _reserve_commissions(
    db: AsyncSession, commissions: Sequence[Commission], payout: Payout,
) -> None:
    ids = [c.id for c in commissions]
    result = await db.execute(
        update(Commission)
        .where(
            Commission.id.in_(ids),
            Commission.status == CommissionStatus.EARNED,
            Commission.payout_id.is_(None),
        )
        .values(status=CommissionStatus.PENDING_PAYOUT, payout_id=payout.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(ids):
        raise LedgerInconsistency(
            f"Reserved {result.rowcount} of {len(ids)} commissions for payout {payout.id}; "
            "another batch claimed some of them."
        )
    for commission in commissions:
        await db.refresh(commission)


async def _create_payout(
    db: AsyncSession,
    technician_id: int,
    commissions: Sequence[Commission],
    payout_type: PayoutType,
    *,
    scheduled_for: Optional[date] = None,
    created_by_id: Optional[int] = None,
) -> Payout:
    total = sum_rounded(c.amount for c in commissions)
    payout = Payout(
        technician_id=technician_id,
        total_amount=total,
        type=payout_type,
        status=PayoutStatus.SCHEDULED,
        scheduled_for=scheduled_for,
        created_by_id=created_by_id,
    )
    db.add(payout)
    await db.flush()
    await _reserve_commissions(db, commissions, payout)

    emit_payout_batch_created(technician_id, payout.id, total, len(commissions))
    return payout


async def create_payout_from_earned(
    db: AsyncSession,
    technician_id: int,
    payout_type: PayoutType,
    *,
    scheduled_for: Optional[date] = None,
    created_by_id: Optional[int] = None,
) -> Optional[Payout]:
    """Reserve one technician's EARNED commissions into a new SCHEDULED payout.

    Returns None when there is nothing to reserve.
    """
    result = await db.execute(
        select(Commission)
        .where(
            Commission.technician_id == technician_id,
            Commission.status == CommissionStatus.EARNED,
            Commission.payout_id.is_(None),
        )
        .order_by(Commission.created_at, Commission.id)
    )
    commissions = list(result.scalars())
    if not commissions:
        return None
    return await _create_payout(
        db,
        technician_id,
        commissions,
        payout_type,
        scheduled_for=scheduled_for,
        created_by_id=created_by_id,
    )


async def create_weekly_batch(
    db: AsyncSession,
    actor: Actor,
    *,
    today: Optional[date] = None,
) -> WeeklyBatch:
    """One SCHEDULED payout per technician with unreserved EARNED commissions.

    Reserves the commissions (PENDING_PAYOUT); wallets are untouched until
    the payout is processed.
    """
    scheduled_for = next_payout_date(today or utcnow().date())
    result = await db.execute(
        select(Commission)
        .where(
            Commission.status == CommissionStatus.EARNED,
            Commission.payout_id.is_(None),
        )
        .order_by(Commission.technician_id, Commission.created_at, Commission.id)
    )
    by_technician: dict[int, list[Commission]] = defaultdict(list)
    for commission in result.scalars():
        by_technician[commission.technician_id].append(commission)

    payouts: list[Payout] = []
    count = 0
    for technician_id, commissions in by_technician.items():
        payout = await _create_payout(
            db,
            technician_id,
            commissions,
            PayoutType.WEEKLY,
            scheduled_for=scheduled_for,
            created_by_id=actor.id,
        )
        payouts.append(payout)
        count += len(commissions)

    grand_total = sum_rounded(p.total_amount for p in payouts)
    if payouts:
        auditService.record(
            db,
            action="PAYOUT_BATCH_CREATED",
            entity_type="Payout",
            entity_id=payouts[0].id,
            user_id=actor.id,
            metadata={
                "payout_ids": [p.id for p in payouts],
                "total_amount": str(grand_total),
                "scheduled_for": scheduled_for.isoformat(),
            },
        )
    logger.info(
        "Weekly batch created: %d payouts, %d commissions, total=%s, scheduled_for=%s",
        len(payouts),
        count,
        grand_total,
        scheduled_for,
    )
    return WeeklyBatch(
        payouts=payouts,
        scheduled_for=scheduled_for,
        total_amount=grand_total,
        commission_count=count,
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

async def get_payout(db: AsyncSession, payout_id: int) -> Payout:
    payout = await db.get(Payout, payout_id)
    if payout is None:
        raise PayoutNotFound(payout_id)
    return payout


async def settle_payout(
    db: AsyncSession,
    payout: Payout,
    actor: Actor,
    *,
    payment_reference: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> PayoutSettlement:
    """Complete ``payout``: commissions PAID, one DEBIT, payout COMPLETED."""
    if payout.status == PayoutStatus.COMPLETED:
        raise PayoutAlreadyProcessed(payout.id)

    result = await db.execute(
        select(Commission).where(Commission.payout_id == payout.id).order_by(Commission.id)
    )
    commissions = list(result.scalars())
    total = round2(payout.total_amount)
    linked_total = sum_rounded(c.amount for c in commissions)
    if linked_total != total:
        logger.error(
            "LEDGER INTEGRITY: payout %s total %s does not match linked commissions %s",
            payout.id,
            total,
            linked_total,
        )
        raise LedgerInconsistency(
            f"Payout {payout.id} total {total} does not match linked commissions {linked_total}."
        )

    wallet = await get_wallet(db, payout.technician_id)
    available = round2(wallet.balance) if wallet else ZERO
    if available < total:
        logger.error(
            "LEDGER INTEGRITY: payout %s for technician %s needs %s but wallet holds %s",
            payout.id,
            payout.technician_id,
            total,
            available,
        )
        raise InsufficientBalance(total, available)

    now = utcnow()
    await db.flush()
    claimed = await db.execute(
        update(Payout)
        .where(Payout.id == payout.id, Payout.status == PayoutStatus.SCHEDULED)
        .values(
            status=PayoutStatus.COMPLETED,
            processed_at=now,
            processed_by_id=actor.id,
            payment_reference=payment_reference,
            payment_method=payment_method,
            notes=notes,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise PayoutAlreadyProcessed(payout.id)

    await db.execute(
        update(Commission)
        .where(Commission.payout_id == payout.id)
        .values(status=CommissionStatus.PAID, paid_at=now)
        .execution_options(synchronize_session=False)
    )

    txn: Optional[WalletTransaction] = None
    if total > ZERO:
        txn = await _apply_wallet_entry(
            db,
            wallet,
            TransactionType.DEBIT,
            total,
            source_type=TransactionSource.PAYOUT,
            source_id=payout.id,
            description=f"{payout.type.value.title()} payout {payout.id}",
        )

    await db.refresh(payout)
    for commission in commissions:
        await db.refresh(commission)

    auditService.record(
        db,
        action="PAYOUT_COMPLETED",
        entity_type="Payout",
        entity_id=payout.id,
        user_id=actor.id,
        metadata={
            "total_amount": str(total),
            "commission_ids": [c.id for c in commissions],
            "payment_reference": payment_reference,
        },
    )
    notificationService.notify_commission_paid(db, payout.technician_id, payout.id, total)
    emit_payout_completed(payout.technician_id, payout.id, payout.type.value, total)
    logger.info(
        "Payout %s completed: technician=%s total=%s commissions=%d",
        payout.id,
        payout.technician_id,
        total,
        len(commissions),
    )
    return PayoutSettlement(
        payout=payout,
        transaction=txn,
        commissions=commissions,
        wallet_balance=round2(wallet.balance) if wallet else ZERO,
    )


async def process_batch(db: AsyncSession, payout_id: int, actor: Actor) -> PayoutSettlement:
    payout = await get_payout(db, payout_id)
    return await settle_payout(db, payout, actor)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

async def get_earnings_summary(db: AsyncSession, technician_id: int) -> EarningsSummary:
    result = await db.execute(
        select(Commission)
        .where(Commission.technician_id == technician_id)
        .order_by(Commission.created_at.desc(), Commission.id.desc())
    )
    commissions = list(result.scalars())

    def _total(status: Optional[CommissionStatus] = None) -> Decimal:
        return sum_rounded(
            c.amount for c in commissions if status is None or c.status == status
        )

    wallet = await get_wallet(db, technician_id)
    return EarningsSummary(
        technician_id=technician_id,
        commissions=commissions,
        total=_total(),
        earned=_total(CommissionStatus.EARNED),
        pending_payout=_total(CommissionStatus.PENDING_PAYOUT),
        paid=_total(CommissionStatus.PAID),
        wallet_balance=round2(wallet.balance) if wallet else ZERO,
    )


async def get_wallet_view(
    db: AsyncSession, technician_id: int, *, limit: int = 50,
) -> WalletView:
    wallet = await get_wallet(db, technician_id)
    if wallet is None:
        return WalletView(technician_id=technician_id, balance=ZERO, transactions=[])
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
    )
    return WalletView(
        technician_id=technician_id,
        balance=round2(wallet.balance),
        transactions=list(result.scalars()),
    )
