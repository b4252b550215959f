"""
Response Deadline API Routes
============================

Routes:
  GET    /api/v1/deadlines                           -- Active response windows
  GET    /api/v1/deadlines/{work_order_id}/remaining -- Remaining time for one order
  POST   /api/v1/deadlines/reconcile                 -- Run the safety-net sweep now
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from src.api.deps import CurrentActor, require_back_office
from src.api.schemas.deadline import DeadlineOut, ReconcileReportOut, RemainingTimeOut
from src.services.deadlineScheduler import get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deadlines", tags=["Deadlines"])


@router.get("", response_model=list[DeadlineOut], summary="List active response windows")
async def list_deadlines(actor: CurrentActor) -> list[DeadlineOut]:
    require_back_office(actor)
    return [DeadlineOut.model_validate(s) for s in get_scheduler().list_active()]


@router.get(
    "/{work_order_id}/remaining",
    response_model=RemainingTimeOut,
    summary="Remaining response time",
)
async def get_remaining(actor: CurrentActor, work_order_id: int) -> RemainingTimeOut:
    remaining = get_scheduler().remaining_time(work_order_id)
    if remaining is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active response deadline for work order '{work_order_id}'.",
        )
    return RemainingTimeOut.model_validate(remaining)


@router.post(
    "/reconcile",
    response_model=ReconcileReportOut,
    summary="Expire overdue windows and restore missing ones",
)
async def reconcile_deadlines(actor: CurrentActor) -> ReconcileReportOut:
    require_back_office(actor)
    report = await get_scheduler().reconcile()
    logger.info(
        "Manual reconcile: %d expired, %d restored, %d failed",
        len(report.expired),
        len(report.restored),
        len(report.failed),
    )
    return ReconcileReportOut.model_validate(report)
