"""
Pydantic v2 schemas for the Payments API
========================================

Request and response schemas for:
- customer payment submission by the assigned technician
- dispatch verification (approve / reject)

All monetary amounts are decimals with two places.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.models.ledger import CommissionStatus, CommissionType
from src.models.payment import PaymentMethod, PaymentStatus
from src.services.compensationLedger import ReviewAction


class PaymentSubmitRequest(BaseModel):
    """Request body for recording a collected payment."""

    work_order_id: int
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    method: PaymentMethod
    transaction_ref: Optional[str] = Field(default=None, max_length=100)


class PaymentVerifyRequest(BaseModel):
    action: ReviewAction
    reason: Optional[str] = Field(
        default=None, max_length=500, description="Required context when rejecting"
    )


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wo_id: int
    technician_id: int
    amount: Decimal
    method: PaymentMethod
    transaction_ref: Optional[str] = None
    status: PaymentStatus
    rejected_reason: Optional[str] = None
    verified_by_id: Optional[int] = None
    verified_at: Optional[datetime] = None
    created_at: datetime


class CommissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wo_id: int
    technician_id: int
    type: CommissionType
    rate: Decimal
    amount: Decimal
    status: CommissionStatus
    payment_id: Optional[int] = None
    payout_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class VerificationOut(BaseModel):
    """Payment plus the earnings it produced (approve only)."""

    model_config = ConfigDict(from_attributes=True)

    payment: PaymentOut
    commission: Optional[CommissionOut] = None
    wallet_balance: Optional[Decimal] = None
    created: bool = False
    note: Optional[str] = None
