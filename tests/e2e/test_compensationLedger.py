"""
E2E: Payment verification, wallets and payouts.

Flow under test:
1. Technician completes a work order and submits the collected payment
2. Dispatch approves -> commission at the technician's rate, wallet credit,
   work order PAID_VERIFIED (all in one transaction)
3. Early payout requests: balance check, approve / reject
4. Weekly batch: EARNED commissions reserved into SCHEDULED payouts, then
   settled against the wallet
5. Out-of-band settlement (mark paid / settle technician) and admin views

After every money movement the stored wallet balance must equal the sum of
its transactions.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from src.core.database import session_scope
from src.core.exceptions import (
    Forbidden,
    InsufficientBalance,
    InvalidPayoutAmount,
    NoPendingCommissions,
    PaymentAlreadyProcessed,
    PayoutAlreadyProcessed,
    PayoutRequestAlreadyReviewed,
)
from src.jobs.weeklyPayout import run_weekly_payout
from src.models import (
    Commission,
    CommissionStatus,
    CommissionType,
    NotificationType,
    Payment,
    PaymentStatus,
    Payout,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutStatus,
    PayoutType,
    TransactionType,
    Wallet,
    WorkOrderStatus,
)
from src.services import compensationLedger, paymentService, payoutBatchProcessor, workOrderService
from src.services.compensationLedger import ReviewAction
from tests.conftest import CLOCK_START
from tests.e2e.conftest import (
    ADMIN,
    DISPATCHER,
    FREELANCER,
    FREELANCER_ID,
    INTERNAL,
    INTERNAL_ID,
    SECOND_FREELANCER,
    SECOND_FREELANCER_ID,
    create_completed,
    create_paid,
    submit_payment,
)


pytestmark = pytest.mark.asyncio

TODAY = CLOCK_START.date()
NEXT_MONDAY = date(2026, 3, 9)


async def _balance(factory, technician_id: int) -> Decimal:
    async with session_scope(factory) as db:
        return (await compensationLedger.get_wallet_view(db, technician_id)).balance


async def _assert_consistent(factory, technician_id: int) -> None:
    async with session_scope(factory) as db:
        audit = await compensationLedger.audit_wallet(db, technician_id)
    assert audit.consistent, f"balance {audit.balance} != ledger {audit.ledger_sum}"


async def _commissions(factory, technician_id: int) -> list[Commission]:
    async with session_scope(factory) as db:
        result = await db.execute(
            select(Commission).where(Commission.technician_id == technician_id).order_by(Commission.id)
        )
        return list(result.scalars())


async def _drift_wallet(factory, technician_id: int, balance: str) -> None:
    """Overwrite a stored balance behind the ledger's back."""
    async with session_scope(factory) as db:
        await db.execute(
            update(Wallet)
            .where(Wallet.technician_id == technician_id)
            .values(balance=Decimal(balance))
        )


async def _request_early(factory, technician_id: int, amount: str) -> int:
    async with session_scope(factory) as db:
        request = await compensationLedger.request_early_payout(
            db, technician_id, Decimal(amount), payment_method="e-transfer",
        )
        return request.id


# ---------------------------------------------------------------------------
# Payment verification
# ---------------------------------------------------------------------------

class TestPaymentVerification:

    async def test_approval_records_commission_and_credits_wallet(self, seeded, gateway):
        wo_id = await create_completed(seeded)
        payment_id = await submit_payment(seeded, wo_id, FREELANCER, Decimal("1000.00"))

        async with session_scope(seeded) as db:
            result = await paymentService.verify_payment(
                db, payment_id, ReviewAction.APPROVE, DISPATCHER,
            )

        assert result.created is True
        assert result.payment.status == PaymentStatus.VERIFIED
        assert result.commission.amount == Decimal("100.00")
        assert result.commission.type == CommissionType.COMMISSION
        assert result.commission.status == CommissionStatus.EARNED
        assert result.wallet_balance == Decimal("100.00")

        async with session_scope(seeded) as db:
            wo = await workOrderService.get_work_order(db, wo_id)
        assert wo.status == WorkOrderStatus.PAID_VERIFIED
        assert NotificationType.PAYMENT_VERIFIED in gateway.types_for(FREELANCER_ID)
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_repeat_verification_is_a_noop(self, seeded):
        _, payment_id = await create_paid(seeded)

        async with session_scope(seeded) as db:
            again = await paymentService.verify_payment(
                db, payment_id, ReviewAction.APPROVE, DISPATCHER,
            )

        assert again.created is False
        assert "already recorded" in again.note
        assert len(await _commissions(seeded, FREELANCER_ID)) == 1
        assert await _balance(seeded, FREELANCER_ID) == Decimal("100.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_internal_technician_earns_bonus(self, seeded):
        await create_paid(seeded, INTERNAL)

        [bonus] = await _commissions(seeded, INTERNAL_ID)
        assert bonus.type == CommissionType.BONUS
        assert bonus.rate == Decimal("0.0300")
        assert bonus.amount == Decimal("30.00")
        assert await _balance(seeded, INTERNAL_ID) == Decimal("30.00")

    async def test_technician_without_profile_uses_system_rate(self, seeded):
        await create_paid(seeded, SECOND_FREELANCER, Decimal("333.33"))

        [commission] = await _commissions(seeded, SECOND_FREELANCER_ID)
        assert commission.type == CommissionType.COMMISSION
        assert commission.amount == Decimal("16.67")

    async def test_rejection_keeps_order_awaiting_payment(self, seeded, gateway):
        wo_id = await create_completed(seeded)
        payment_id = await submit_payment(seeded, wo_id, FREELANCER, Decimal("1000.00"))

        async with session_scope(seeded) as db:
            result = await paymentService.verify_payment(
                db, payment_id, ReviewAction.REJECT, DISPATCHER, reason="Receipt unreadable",
            )
        assert result.payment.status == PaymentStatus.REJECTED
        assert result.payment.rejected_reason == "Receipt unreadable"
        assert NotificationType.PAYMENT_REJECTED in gateway.types_for(FREELANCER_ID)

        async with session_scope(seeded) as db:
            wo = await workOrderService.get_work_order(db, wo_id)
        assert wo.status == WorkOrderStatus.COMPLETED_PENDING_PAYMENT
        assert await _commissions(seeded, FREELANCER_ID) == []

        # A corrected payment can be submitted and approved
        retry_id = await submit_payment(seeded, wo_id, FREELANCER, Decimal("950.00"))
        async with session_scope(seeded) as db:
            approved = await paymentService.verify_payment(
                db, retry_id, ReviewAction.APPROVE, DISPATCHER,
            )
        assert approved.commission.amount == Decimal("95.00")

    async def test_second_submission_is_refused(self, seeded):
        wo_id = await create_completed(seeded)
        await submit_payment(seeded, wo_id, FREELANCER, Decimal("100.00"))

        with pytest.raises(PaymentAlreadyProcessed):
            await submit_payment(seeded, wo_id, FREELANCER, Decimal("100.00"))

    async def test_rejecting_a_verified_payment_fails(self, seeded):
        _, payment_id = await create_paid(seeded)

        with pytest.raises(PaymentAlreadyProcessed):
            async with session_scope(seeded) as db:
                await paymentService.verify_payment(
                    db, payment_id, ReviewAction.REJECT, DISPATCHER, reason="late",
                )

    async def test_technician_cannot_verify(self, seeded):
        wo_id = await create_completed(seeded)
        payment_id = await submit_payment(seeded, wo_id, FREELANCER, Decimal("100.00"))

        with pytest.raises(Forbidden):
            async with session_scope(seeded) as db:
                await paymentService.verify_payment(
                    db, payment_id, ReviewAction.APPROVE, FREELANCER,
                )

        async with session_scope(seeded) as db:
            payment = await db.get(Payment, payment_id)
        assert payment.status == PaymentStatus.PENDING_VERIFICATION


# ---------------------------------------------------------------------------
# Early payouts
# ---------------------------------------------------------------------------

class TestEarlyPayout:

    async def test_request_over_balance_is_refused(self, seeded):
        await create_paid(seeded)

        with pytest.raises(InsufficientBalance):
            await _request_early(seeded, FREELANCER_ID, "150.00")

    async def test_request_without_wallet_is_refused(self, seeded):
        with pytest.raises(InsufficientBalance):
            await _request_early(seeded, SECOND_FREELANCER_ID, "1.00")

    async def test_non_positive_amount_is_refused(self, seeded):
        await create_paid(seeded)

        with pytest.raises(InvalidPayoutAmount):
            await _request_early(seeded, FREELANCER_ID, "0")

    async def test_approval_debits_and_links_commissions(self, seeded, gateway):
        await create_paid(seeded)
        request_id = await _request_early(seeded, FREELANCER_ID, "60.00")

        async with session_scope(seeded) as db:
            review = await compensationLedger.review_payout_request(
                db, request_id, ReviewAction.APPROVE, ADMIN,
            )

        assert review.request.status == PayoutRequestStatus.APPROVED
        assert review.payout.type == PayoutType.EARLY
        assert review.payout.status == PayoutStatus.COMPLETED
        assert review.transaction.type == TransactionType.DEBIT
        assert review.transaction.amount == Decimal("60.00")
        # The only commission covers the amount and is linked whole
        assert [c.status for c in review.linked_commissions] == [CommissionStatus.PAID]

        assert await _balance(seeded, FREELANCER_ID) == Decimal("40.00")
        assert NotificationType.COMMISSION_PAID in gateway.types_for(FREELANCER_ID)
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_rejection_leaves_wallet_alone(self, seeded, gateway):
        await create_paid(seeded)
        request_id = await _request_early(seeded, FREELANCER_ID, "60.00")

        async with session_scope(seeded) as db:
            review = await compensationLedger.review_payout_request(
                db, request_id, ReviewAction.REJECT, ADMIN, rejected_reason="Wait for Monday",
            )

        assert review.request.status == PayoutRequestStatus.REJECTED
        assert review.request.rejected_reason == "Wait for Monday"
        assert review.payout is None
        assert await _balance(seeded, FREELANCER_ID) == Decimal("100.00")
        assert NotificationType.PAYOUT_REQUEST_REJECTED in gateway.types_for(FREELANCER_ID)

    async def test_request_is_reviewed_once(self, seeded):
        await create_paid(seeded)
        request_id = await _request_early(seeded, FREELANCER_ID, "10.00")
        async with session_scope(seeded) as db:
            await compensationLedger.review_payout_request(db, request_id, ReviewAction.APPROVE, ADMIN)

        with pytest.raises(PayoutRequestAlreadyReviewed):
            async with session_scope(seeded) as db:
                await compensationLedger.review_payout_request(
                    db, request_id, ReviewAction.APPROVE, ADMIN,
                )
        assert await _balance(seeded, FREELANCER_ID) == Decimal("90.00")

    async def test_approval_rechecks_balance(self, seeded):
        """Two requests each fit the balance; only the first can be paid."""
        await create_paid(seeded)
        first = await _request_early(seeded, FREELANCER_ID, "70.00")
        second = await _request_early(seeded, FREELANCER_ID, "70.00")
        async with session_scope(seeded) as db:
            await compensationLedger.review_payout_request(db, first, ReviewAction.APPROVE, ADMIN)

        with pytest.raises(InsufficientBalance):
            async with session_scope(seeded) as db:
                await compensationLedger.review_payout_request(db, second, ReviewAction.APPROVE, ADMIN)

        assert await _balance(seeded, FREELANCER_ID) == Decimal("30.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_batch_reservation_is_not_spendable(self, seeded):
        """Money held by a SCHEDULED payout cannot be requested early."""
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)

        with pytest.raises(InsufficientBalance) as excinfo:
            await _request_early(seeded, FREELANCER_ID, "60.00")
        assert excinfo.value.available == Decimal("0.00")
        assert excinfo.value.reserved == Decimal("100.00")
        assert "balance 100.00, 100.00 reserved" in excinfo.value.message

        async with session_scope(seeded) as db:
            settlement = await compensationLedger.process_batch(db, batch.payouts[0].id, ADMIN)
        assert settlement.payout.status == PayoutStatus.COMPLETED
        assert settlement.wallet_balance == Decimal("0.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_approval_respects_reservation_made_after_request(self, seeded):
        await create_paid(seeded)
        request_id = await _request_early(seeded, FREELANCER_ID, "60.00")
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)

        with pytest.raises(InsufficientBalance):
            async with session_scope(seeded) as db:
                await compensationLedger.review_payout_request(
                    db, request_id, ReviewAction.APPROVE, ADMIN,
                )

        async with session_scope(seeded) as db:
            request = await db.get(PayoutRequest, request_id)
            settlement = await compensationLedger.process_batch(db, batch.payouts[0].id, ADMIN)
        assert request.status == PayoutRequestStatus.PENDING
        assert settlement.payout.status == PayoutStatus.COMPLETED
        assert await _balance(seeded, FREELANCER_ID) == Decimal("0.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_unreserved_earnings_stay_spendable(self, seeded):
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)
        await create_paid(seeded, amount=Decimal("250.00"))

        request_id = await _request_early(seeded, FREELANCER_ID, "25.00")
        async with session_scope(seeded) as db:
            review = await compensationLedger.review_payout_request(
                db, request_id, ReviewAction.APPROVE, ADMIN,
            )
        assert [c.amount for c in review.linked_commissions] == [Decimal("25.00")]

        async with session_scope(seeded) as db:
            settlement = await compensationLedger.process_batch(db, batch.payouts[0].id, ADMIN)
        assert settlement.wallet_balance == Decimal("0.00")
        await _assert_consistent(seeded, FREELANCER_ID)


# ---------------------------------------------------------------------------
# Weekly batches
# ---------------------------------------------------------------------------

class TestWeeklyBatch:

    async def test_batch_reserves_earned_commissions(self, seeded):
        await create_paid(seeded)
        await create_paid(seeded)
        await create_paid(seeded, INTERNAL)

        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)

        assert batch.scheduled_for == NEXT_MONDAY
        assert batch.commission_count == 3
        assert batch.total_amount == Decimal("230.00")
        by_tech = {p.technician_id: p for p in batch.payouts}
        assert by_tech[FREELANCER_ID].total_amount == Decimal("200.00")
        assert by_tech[INTERNAL_ID].total_amount == Decimal("30.00")
        assert all(p.status == PayoutStatus.SCHEDULED for p in batch.payouts)

        for commission in await _commissions(seeded, FREELANCER_ID):
            assert commission.status == CommissionStatus.PENDING_PAYOUT
            assert commission.payout_id == by_tech[FREELANCER_ID].id
        # Reservation does not move money
        assert await _balance(seeded, FREELANCER_ID) == Decimal("200.00")

    async def test_empty_batch(self, seeded):
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)

        assert batch.payouts == []
        assert batch.total_amount == Decimal("0.00")

    async def test_reserved_commissions_are_not_batched_twice(self, seeded):
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)
        async with session_scope(seeded) as db:
            again = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)

        assert again.payouts == []

    async def test_processing_settles_once(self, seeded, gateway):
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)
        payout_id = batch.payouts[0].id

        async with session_scope(seeded) as db:
            settlement = await compensationLedger.process_batch(db, payout_id, ADMIN)

        assert settlement.payout.status == PayoutStatus.COMPLETED
        assert settlement.transaction.amount == Decimal("100.00")
        assert settlement.wallet_balance == Decimal("0.00")
        assert [c.status for c in settlement.commissions] == [CommissionStatus.PAID]
        assert NotificationType.COMMISSION_PAID in gateway.types_for(FREELANCER_ID)

        with pytest.raises(PayoutAlreadyProcessed):
            async with session_scope(seeded) as db:
                await compensationLedger.process_batch(db, payout_id, ADMIN)
        assert await _balance(seeded, FREELANCER_ID) == Decimal("0.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_processing_requires_covering_balance(self, seeded):
        """A wallet that drifted below its reservation is not debited; the
        payout stays SCHEDULED."""
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            batch = await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)
        await _drift_wallet(seeded, FREELANCER_ID, "40.00")

        with pytest.raises(InsufficientBalance):
            async with session_scope(seeded) as db:
                await compensationLedger.process_batch(db, batch.payouts[0].id, ADMIN)

        async with session_scope(seeded) as db:
            payout = await db.get(Payout, batch.payouts[0].id)
        assert payout.status == PayoutStatus.SCHEDULED
        assert await _balance(seeded, FREELANCER_ID) == Decimal("40.00")


# ---------------------------------------------------------------------------
# Batch processor and jobs
# ---------------------------------------------------------------------------

class TestBatchProcessor:

    async def test_weekly_cycle_settles_everyone(self, seeded):
        await create_paid(seeded)
        await create_paid(seeded, INTERNAL)

        report = await payoutBatchProcessor.run_weekly_cycle(
            ADMIN, session_factory=seeded, today=TODAY,
        )

        assert len(report.batch.payouts) == 2
        assert sorted(report.completed) == sorted(p.id for p in report.batch.payouts)
        assert report.failed == {}
        assert await _balance(seeded, FREELANCER_ID) == Decimal("0.00")
        assert await _balance(seeded, INTERNAL_ID) == Decimal("0.00")

    async def test_one_failure_does_not_block_the_batch(self, seeded):
        await create_paid(seeded)
        await create_paid(seeded, INTERNAL)
        report = await payoutBatchProcessor.run_weekly_cycle(
            ADMIN, session_factory=seeded, process=False, today=TODAY,
        )
        by_tech = {p.technician_id: p.id for p in report.batch.payouts}
        await _drift_wallet(seeded, FREELANCER_ID, "40.00")

        completed, failed = [], {}
        for payout_id in by_tech.values():
            try:
                async with session_scope(seeded) as db:
                    await payoutBatchProcessor.process_batch(db, payout_id, ADMIN)
            except InsufficientBalance as exc:
                failed[payout_id] = exc.message
            else:
                completed.append(payout_id)

        assert completed == [by_tech[INTERNAL_ID]]
        assert list(failed) == [by_tech[FREELANCER_ID]]

    async def test_weekly_payout_job(self, seeded):
        await create_paid(seeded)

        report = await run_weekly_payout(session_factory=seeded, today=TODAY)

        assert report.batch.scheduled_for == NEXT_MONDAY
        assert len(report.completed) == 1
        async with session_scope(seeded) as db:
            payout = await db.get(Payout, report.completed[0])
        assert payout.type == PayoutType.WEEKLY
        assert payout.created_by_id is None

    async def test_weekly_payout_job_create_only(self, seeded):
        await create_paid(seeded)

        report = await run_weekly_payout(session_factory=seeded, settle=False, today=TODAY)

        assert report.completed == []
        assert report.batch.payouts[0].status == PayoutStatus.SCHEDULED
        assert await _balance(seeded, FREELANCER_ID) == Decimal("100.00")

    async def test_mark_batch_paid_records_reference(self, seeded):
        await create_paid(seeded)
        report = await payoutBatchProcessor.run_weekly_cycle(
            ADMIN, session_factory=seeded, process=False, today=TODAY,
        )

        async with session_scope(seeded) as db:
            settlement = await payoutBatchProcessor.mark_batch_paid(
                db,
                report.batch.payouts[0].id,
                ADMIN,
                payment_reference="WIRE-2026-0309",
                payment_method="bank_transfer",
            )

        assert settlement.payout.status == PayoutStatus.COMPLETED
        assert settlement.payout.payment_reference == "WIRE-2026-0309"
        assert settlement.wallet_balance == Decimal("0.00")
        await _assert_consistent(seeded, FREELANCER_ID)

    async def test_settle_technician_on_demand(self, seeded):
        await create_paid(seeded)
        await create_paid(seeded, amount=Decimal("500.00"))

        async with session_scope(seeded) as db:
            settlement = await payoutBatchProcessor.settle_technician(
                db, FREELANCER_ID, ADMIN, payment_reference="CHQ-88",
            )

        assert settlement.payout.type == PayoutType.ON_DEMAND
        assert settlement.payout.total_amount == Decimal("150.00")
        assert len(settlement.commissions) == 2
        assert settlement.wallet_balance == Decimal("0.00")

        with pytest.raises(NoPendingCommissions):
            async with session_scope(seeded) as db:
                await payoutBatchProcessor.settle_technician(
                    db, FREELANCER_ID, ADMIN, payment_reference="CHQ-89",
                )

    async def test_payout_summary(self, seeded):
        await create_paid(seeded)
        await create_paid(seeded, INTERNAL)
        await _request_early(seeded, FREELANCER_ID, "20.00")

        async with session_scope(seeded) as db:
            summary = await payoutBatchProcessor.get_payout_summary(db, now=CLOCK_START)

        assert summary.pending_commission_amount == Decimal("130.00")
        assert summary.pending_commission_count == 2
        assert summary.pending_request_amount == Decimal("20.00")
        assert summary.pending_request_count == 1
        assert summary.next_payout_date == NEXT_MONDAY


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

class TestViews:

    async def test_earnings_summary_buckets(self, seeded):
        await create_paid(seeded)
        async with session_scope(seeded) as db:
            await compensationLedger.create_weekly_batch(db, ADMIN, today=TODAY)
        await create_paid(seeded, amount=Decimal("250.00"))

        async with session_scope(seeded) as db:
            summary = await compensationLedger.get_earnings_summary(db, FREELANCER_ID)

        assert summary.total == Decimal("125.00")
        assert summary.pending_payout == Decimal("100.00")
        assert summary.earned == Decimal("25.00")
        assert summary.paid == Decimal("0.00")
        assert summary.wallet_balance == Decimal("125.00")

    async def test_wallet_view_lists_entries(self, seeded):
        await create_paid(seeded)
        request_id = await _request_early(seeded, FREELANCER_ID, "25.00")
        async with session_scope(seeded) as db:
            await compensationLedger.review_payout_request(db, request_id, ReviewAction.APPROVE, ADMIN)

        async with session_scope(seeded) as db:
            view = await compensationLedger.get_wallet_view(db, FREELANCER_ID)

        assert view.balance == Decimal("75.00")
        assert sorted(t.type for t in view.transactions) == [TransactionType.CREDIT, TransactionType.DEBIT]

    async def test_wallet_view_without_wallet(self, seeded):
        async with session_scope(seeded) as db:
            view = await compensationLedger.get_wallet_view(db, SECOND_FREELANCER_ID)
        assert view.balance == Decimal("0")
        assert view.transactions == []
