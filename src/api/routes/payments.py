"""
Payment API Routes
==================

Routes:
  POST   /api/v1/payments                      -- Technician submits a collected payment
  GET    /api/v1/payments                      -- List payments
  GET    /api/v1/payments/{payment_id}         -- Payment detail
  POST   /api/v1/payments/{payment_id}/verify  -- Dispatch approves or rejects
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentActor, DBSession
from src.api.errors import http_error
from src.api.schemas.payment import (
    PaymentOut,
    PaymentSubmitRequest,
    PaymentVerifyRequest,
    VerificationOut,
)
from src.core.exceptions import DispatchError
from src.models.payment import PaymentStatus
from src.services import paymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "",
    response_model=PaymentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a collected payment",
)
async def submit_payment(
    db: DBSession,
    actor: CurrentActor,
    body: PaymentSubmitRequest,
) -> PaymentOut:
    try:
        payment = await paymentService.submit_payment(
            db,
            actor,
            body.work_order_id,
            amount=body.amount,
            method=body.method,
            transaction_ref=body.transaction_ref,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return PaymentOut.model_validate(payment)


@router.get("", response_model=list[PaymentOut], summary="List payments")
async def list_payments(
    db: DBSession,
    actor: CurrentActor,
    status_filter: Optional[PaymentStatus] = Query(default=None, alias="status"),
    work_order_id: Optional[int] = Query(default=None),
) -> list[PaymentOut]:
    payments = await paymentService.list_payments(
        db, status=status_filter, work_order_id=work_order_id,
    )
    return [PaymentOut.model_validate(p) for p in payments]


@router.get("/{payment_id}", response_model=PaymentOut, summary="Get a payment")
async def get_payment(db: DBSession, actor: CurrentActor, payment_id: int) -> PaymentOut:
    try:
        payment = await paymentService.get_payment(db, payment_id)
    except DispatchError as exc:
        raise http_error(exc)
    return PaymentOut.model_validate(payment)


@router.post(
    "/{payment_id}/verify",
    response_model=VerificationOut,
    summary="Verify or reject a payment",
    description=(
        "APPROVE records the technician's commission, credits their wallet and "
        "moves the work order to PAID_VERIFIED. Repeating an approval is a "
        "no-op that returns the existing commission."
    ),
)
async def verify_payment(
    db: DBSession,
    actor: CurrentActor,
    payment_id: int,
    body: PaymentVerifyRequest,
) -> VerificationOut:
    try:
        result = await paymentService.verify_payment(
            db, payment_id, body.action, actor, reason=body.reason,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return VerificationOut.model_validate(result)
