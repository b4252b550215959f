"""
Wallet & Earnings API Routes
============================

Routes:
  GET    /api/v1/wallets/{technician_id}    -- Balance and transaction history
  GET    /api/v1/earnings/{technician_id}   -- Commissions and earnings summary
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from src.api.deps import CurrentActor, DBSession, require_self_or_back_office
from src.api.schemas.payout import EarningsOut, WalletOut
from src.services import compensationLedger

router = APIRouter(tags=["Wallets"])


@router.get(
    "/wallets/{technician_id}",
    response_model=WalletOut,
    summary="Wallet balance and history",
)
async def get_wallet(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
    limit: int = Query(default=50, ge=1, le=500),
) -> WalletOut:
    require_self_or_back_office(actor, technician_id)
    view = await compensationLedger.get_wallet_view(db, technician_id, limit=limit)
    return WalletOut.model_validate(view)


@router.get(
    "/earnings/{technician_id}",
    response_model=EarningsOut,
    summary="Technician earnings",
)
async def get_earnings(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
) -> EarningsOut:
    require_self_or_back_office(actor, technician_id)
    summary = await compensationLedger.get_earnings_summary(db, technician_id)
    return EarningsOut.model_validate(summary)
