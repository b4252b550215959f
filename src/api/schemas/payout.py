"""
Pydantic v2 schemas for wallets, earnings and payouts
=====================================================
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.api.schemas.payment import CommissionOut
from src.models.ledger import (
    PayoutRequestStatus,
    PayoutStatus,
    PayoutType,
    TransactionSource,
    TransactionType,
)
from src.services.compensationLedger import ReviewAction


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class EarlyPayoutRequestCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    reason: Optional[str] = Field(default=None, max_length=500)


class PayoutRequestReview(BaseModel):
    action: ReviewAction
    rejected_reason: Optional[str] = Field(default=None, max_length=500)


class WeeklyBatchRequest(BaseModel):
    today: Optional[date] = Field(
        default=None, description="Override the batch date (defaults to today, UTC)"
    )


class MarkPaidRequest(BaseModel):
    payment_reference: str = Field(min_length=1, max_length=100)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    source_type: TransactionSource
    source_id: Optional[int] = None
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime


class WalletOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    technician_id: int
    balance: Decimal
    transactions: list[WalletTransactionOut] = []


class EarningsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    technician_id: int
    commissions: list[CommissionOut]
    total: Decimal
    earned: Decimal
    pending_payout: Decimal
    paid: Decimal
    wallet_balance: Decimal


class PayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    technician_id: int
    total_amount: Decimal
    type: PayoutType
    status: PayoutStatus
    scheduled_for: Optional[date] = None
    processed_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class PayoutRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    technician_id: int
    amount: Decimal
    status: PayoutRequestStatus
    reason: Optional[str] = None
    payment_method: Optional[str] = None
    reviewed_by_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    payout_id: Optional[int] = None
    created_at: datetime


class PayoutReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request: PayoutRequestOut
    payout: Optional[PayoutOut] = None
    linked_commissions: list[CommissionOut] = []


class WeeklyBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payouts: list[PayoutOut]
    scheduled_for: date
    total_amount: Decimal
    commission_count: int


class PayoutSettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payout: PayoutOut
    commissions: list[CommissionOut]
    wallet_balance: Decimal


class PayoutSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending_commission_amount: Decimal
    pending_commission_count: int
    pending_request_amount: Decimal
    pending_request_count: int
    next_payout_date: date
    completed_this_month: Decimal
