"""
Payout API Routes
=================

Routes:
  POST   /api/v1/payouts/requests                      -- Technician requests an early payout
  GET    /api/v1/payouts/requests                      -- List payout requests
  POST   /api/v1/payouts/requests/{request_id}/review  -- Approve / reject a request
  POST   /api/v1/payouts/weekly-batch                  -- Create this week's batch
  GET    /api/v1/payouts                               -- List payouts
  GET    /api/v1/payouts/summary                       -- Admin payout summary
  GET    /api/v1/payouts/pending-commissions           -- Unreserved EARNED commissions
  POST   /api/v1/payouts/{payout_id}/process           -- Settle a scheduled payout
  POST   /api/v1/payouts/{payout_id}/mark-paid         -- Record an external settlement
  POST   /api/v1/payouts/settle/{technician_id}        -- Settle a technician now
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentActor, DBSession, require_back_office
from src.api.errors import http_error
from src.api.schemas.payment import CommissionOut
from src.api.schemas.payout import (
    EarlyPayoutRequestCreate,
    MarkPaidRequest,
    PayoutOut,
    PayoutRequestOut,
    PayoutRequestReview,
    PayoutReviewOut,
    PayoutSettlementOut,
    PayoutSummaryOut,
    WeeklyBatchOut,
    WeeklyBatchRequest,
)
from src.core.exceptions import DispatchError, Forbidden
from src.models.ledger import CommissionType, PayoutRequestStatus, PayoutStatus, PayoutType
from src.services import compensationLedger, payoutBatchProcessor
from src.services.workOrderStateMachine import ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


# ---------------------------------------------------------------------------
# Early payout requests
# ---------------------------------------------------------------------------

@router.post(
    "/requests",
    response_model=PayoutRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request an early payout",
)
async def request_early_payout(
    db: DBSession,
    actor: CurrentActor,
    body: EarlyPayoutRequestCreate,
) -> PayoutRequestOut:
    try:
        if actor.actor_type != ActorType.TECHNICIAN:
            raise Forbidden("Only technicians can request payouts.")
        request = await compensationLedger.request_early_payout(
            db,
            actor.id,
            body.amount,
            payment_method=body.payment_method,
            reason=body.reason,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return PayoutRequestOut.model_validate(request)


@router.get("/requests", response_model=list[PayoutRequestOut], summary="List payout requests")
async def list_payout_requests(
    db: DBSession,
    actor: CurrentActor,
    status_filter: Optional[PayoutRequestStatus] = Query(default=None, alias="status"),
    technician_id: Optional[int] = Query(default=None),
) -> list[PayoutRequestOut]:
    require_back_office(actor)
    requests = await payoutBatchProcessor.list_payout_requests(
        db, status=status_filter, technician_id=technician_id,
    )
    return [PayoutRequestOut.model_validate(r) for r in requests]


@router.post(
    "/requests/{request_id}/review",
    response_model=PayoutReviewOut,
    summary="Approve or reject an early payout request",
)
async def review_payout_request(
    db: DBSession,
    actor: CurrentActor,
    request_id: int,
    body: PayoutRequestReview,
) -> PayoutReviewOut:
    require_back_office(actor)
    try:
        review = await compensationLedger.review_payout_request(
            db, request_id, body.action, actor, rejected_reason=body.rejected_reason,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return PayoutReviewOut.model_validate(review)


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

@router.post(
    "/weekly-batch",
    response_model=WeeklyBatchOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create the weekly payout batch",
    description=(
        "Creates one SCHEDULED payout per technician with unreserved EARNED "
        "commissions. Returns an empty batch when nothing is pending."
    ),
)
async def create_weekly_batch(
    db: DBSession,
    actor: CurrentActor,
    body: WeeklyBatchRequest,
) -> WeeklyBatchOut:
    require_back_office(actor)
    try:
        batch = await compensationLedger.create_weekly_batch(db, actor, today=body.today)
    except DispatchError as exc:
        raise http_error(exc)
    return WeeklyBatchOut.model_validate(batch)


@router.get("", response_model=list[PayoutOut], summary="List payouts")
async def list_payouts(
    db: DBSession,
    actor: CurrentActor,
    status_filter: Optional[PayoutStatus] = Query(default=None, alias="status"),
    payout_type: Optional[PayoutType] = Query(default=None, alias="type"),
    technician_id: Optional[int] = Query(default=None),
) -> list[PayoutOut]:
    require_back_office(actor)
    payouts = await payoutBatchProcessor.list_payouts(
        db, status=status_filter, payout_type=payout_type, technician_id=technician_id,
    )
    return [PayoutOut.model_validate(p) for p in payouts]


@router.get("/summary", response_model=PayoutSummaryOut, summary="Payout summary")
async def get_payout_summary(db: DBSession, actor: CurrentActor) -> PayoutSummaryOut:
    require_back_office(actor)
    summary = await payoutBatchProcessor.get_payout_summary(db)
    return PayoutSummaryOut.model_validate(summary)


@router.get(
    "/pending-commissions",
    response_model=list[CommissionOut],
    summary="Commissions not yet in any payout",
)
async def list_pending_commissions(
    db: DBSession,
    actor: CurrentActor,
    commission_type: Optional[CommissionType] = Query(default=None, alias="type"),
) -> list[CommissionOut]:
    require_back_office(actor)
    commissions = await payoutBatchProcessor.list_pending_commissions(
        db, commission_type=commission_type,
    )
    return [CommissionOut.model_validate(c) for c in commissions]


@router.post(
    "/{payout_id}/process",
    response_model=PayoutSettlementOut,
    summary="Settle a scheduled payout",
)
async def process_payout(
    db: DBSession,
    actor: CurrentActor,
    payout_id: int,
) -> PayoutSettlementOut:
    require_back_office(actor)
    try:
        settlement = await payoutBatchProcessor.process_batch(db, payout_id, actor)
    except DispatchError as exc:
        raise http_error(exc)
    return PayoutSettlementOut.model_validate(settlement)


@router.post(
    "/{payout_id}/mark-paid",
    response_model=PayoutSettlementOut,
    summary="Record an externally confirmed settlement",
)
async def mark_payout_paid(
    db: DBSession,
    actor: CurrentActor,
    payout_id: int,
    body: MarkPaidRequest,
) -> PayoutSettlementOut:
    require_back_office(actor)
    try:
        settlement = await payoutBatchProcessor.mark_batch_paid(
            db,
            payout_id,
            actor,
            payment_reference=body.payment_reference,
            payment_method=body.payment_method,
            notes=body.notes,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return PayoutSettlementOut.model_validate(settlement)


@router.post(
    "/settle/{technician_id}",
    response_model=PayoutSettlementOut,
    summary="Pay out a technician's earned commissions now",
)
async def settle_technician(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
    body: MarkPaidRequest,
) -> PayoutSettlementOut:
    require_back_office(actor)
    try:
        settlement = await payoutBatchProcessor.settle_technician(
            db,
            technician_id,
            actor,
            payment_reference=body.payment_reference,
            payment_method=body.payment_method,
            notes=body.notes,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return PayoutSettlementOut.model_validate(settlement)
