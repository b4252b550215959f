"""
Ledger Event Emission
=====================

Events for compensation-ledger mutations. Like the work order events these
log the payload and return it; amounts are serialised as strings so no
precision is lost downstream.

Events emitted:
  - ledger.commission_earned
  - ledger.wallet_credited
  - ledger.wallet_debited
  - ledger.payout_batch_created
  - ledger.payout_completed
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    technician_id: int,
    *,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "technician_id": technician_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_commission_earned(
    technician_id: int,
    commission_id: int,
    work_order_id: int,
    commission_type: str,
    rate: Decimal,
    amount: Decimal,
) -> dict[str, Any]:
    event = _build_event(
        "ledger.commission_earned",
        technician_id,
        data={
            "commission_id": commission_id,
            "work_order_id": work_order_id,
            "type": commission_type,
            "rate": str(rate),
            "amount": str(amount),
        },
    )
    logger.info(
        "Event emitted: %s technician=%s wo=%s amount=%s",
        event["event_type"],
        technician_id,
        work_order_id,
        amount,
    )
    return event


def emit_wallet_credited(
    technician_id: int, amount: Decimal, balance: Decimal, source: str,
) -> dict[str, Any]:
    event = _build_event(
        "ledger.wallet_credited",
        technician_id,
        data={"amount": str(amount), "balance": str(balance), "source": source},
    )
    logger.info(
        "Event emitted: %s technician=%s amount=%s balance=%s",
        event["event_type"],
        technician_id,
        amount,
        balance,
    )
    return event


def emit_wallet_debited(
    technician_id: int, amount: Decimal, balance: Decimal, source: str,
) -> dict[str, Any]:
    event = _build_event(
        "ledger.wallet_debited",
        technician_id,
        data={"amount": str(amount), "balance": str(balance), "source": source},
    )
    logger.info(
        "Event emitted: %s technician=%s amount=%s balance=%s",
        event["event_type"],
        technician_id,
        amount,
        balance,
    )
    return event


def emit_payout_batch_created(
    technician_id: int, payout_id: int, total_amount: Decimal, commission_count: int,
) -> dict[str, Any]:
    event = _build_event(
        "ledger.payout_batch_created",
        technician_id,
        data={
            "payout_id": payout_id,
            "total_amount": str(total_amount),
            "commission_count": commission_count,
        },
    )
    logger.info(
        "Event emitted: %s technician=%s payout=%s total=%s",
        event["event_type"],
        technician_id,
        payout_id,
        total_amount,
    )
    return event


def emit_payout_completed(
    technician_id: int, payout_id: int, payout_type: str, total_amount: Decimal,
) -> dict[str, Any]:
    event = _build_event(
        "ledger.payout_completed",
        technician_id,
        data={
            "payout_id": payout_id,
            "type": payout_type,
            "total_amount": str(total_amount),
        },
    )
    logger.info(
        "Event emitted: %s technician=%s payout=%s total=%s",
        event["event_type"],
        technician_id,
        payout_id,
        total_amount,
    )
    return event
