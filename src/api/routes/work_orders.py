"""
Work Order API Routes
=====================

REST endpoints for the work order lifecycle.

Routes:
  POST   /api/v1/work-orders                        -- Create (optionally assigned)
  GET    /api/v1/work-orders                        -- List (paginated, filterable)
  GET    /api/v1/work-orders/{id}                   -- Detail
  POST   /api/v1/work-orders/{id}/assign            -- Assign a technician
  POST   /api/v1/work-orders/{id}/reassign          -- Change technician / schedule
  POST   /api/v1/work-orders/{id}/respond           -- Technician accept / decline
  POST   /api/v1/work-orders/{id}/start             -- Check in and start
  POST   /api/v1/work-orders/{id}/complete          -- Complete with notes/materials
  POST   /api/v1/work-orders/{id}/cancel            -- Cancel
  POST   /api/v1/work-orders/{id}/reschedule        -- Move the scheduled time
  GET    /api/v1/work-orders/{id}/remaining-time    -- Response window countdown
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from src.api.deps import CurrentActor, DBSession
from src.api.errors import http_error
from src.api.schemas.deadline import RemainingTimeOut
from src.api.schemas.work_order import (
    AssignRequest,
    CancelRequest,
    CompleteRequest,
    PaginationMeta,
    ReassignRequest,
    RescheduleRequest,
    RespondRequest,
    StartRequest,
    WorkOrderCreateRequest,
    WorkOrderListResponse,
    WorkOrderOut,
    WorkOrderResultOut,
)
from src.core.config import settings
from src.core.exceptions import DispatchError
from src.models.work_order import WorkOrderStatus
from src.services import workOrderService
from src.services.deadlineScheduler import get_scheduler
from src.services.workOrderService import WorkOrderResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/work-orders", tags=["Work Orders"])


def _result_out(result: WorkOrderResult) -> WorkOrderResultOut:
    return WorkOrderResultOut(
        work_order=WorkOrderOut.model_validate(result.work_order),
        deadline=result.deadline,
    )


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=WorkOrderResultOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a work order",
    description=(
        "Creates a work order in UNASSIGNED. When technician_id is given the "
        "order is assigned immediately and the response window starts."
    ),
)
async def create_work_order(
    db: DBSession,
    actor: CurrentActor,
    body: WorkOrderCreateRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.create_work_order(
            db,
            actor,
            customer_id=body.customer_id,
            technician_id=body.technician_id,
            sr_id=body.sr_id,
            scheduled_at=body.scheduled_at,
            address=body.address,
            notes=body.notes,
            estimated_duration_min=body.estimated_duration_min,
            response_minutes=body.response_minutes,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.get("", response_model=WorkOrderListResponse, summary="List work orders")
async def list_work_orders(
    db: DBSession,
    actor: CurrentActor,
    status_filter: Optional[WorkOrderStatus] = Query(default=None, alias="status"),
    technician_id: Optional[int] = Query(default=None),
    customer_id: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size),
) -> WorkOrderListResponse:
    try:
        result = await workOrderService.list_work_orders(
            db,
            actor=actor,
            status=status_filter,
            technician_id=technician_id,
            customer_id=customer_id,
            page=page,
            page_size=page_size,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return WorkOrderListResponse(
        data=[WorkOrderOut.model_validate(wo) for wo in result.items],
        meta=PaginationMeta(
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ),
    )


@router.get("/{work_order_id}", response_model=WorkOrderOut, summary="Get a work order")
async def get_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
) -> WorkOrderOut:
    try:
        wo = await workOrderService.get_visible_work_order(db, work_order_id, actor)
    except DispatchError as exc:
        raise http_error(exc)
    return WorkOrderOut.model_validate(wo)


# ---------------------------------------------------------------------------
# Dispatch operations
# ---------------------------------------------------------------------------

@router.post(
    "/{work_order_id}/assign",
    response_model=WorkOrderResultOut,
    summary="Assign a technician",
)
async def assign_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: AssignRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.assign(
            db,
            work_order_id,
            body.technician_id,
            actor,
            response_minutes=body.response_minutes,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.post(
    "/{work_order_id}/reassign",
    response_model=WorkOrderResultOut,
    summary="Reassign or unassign, optionally moving the schedule",
)
async def reassign_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: ReassignRequest,
) -> WorkOrderResultOut:
    kwargs = {}
    if "technician_id" in body.model_fields_set:
        kwargs["technician_id"] = body.technician_id
    try:
        result = await workOrderService.reassign(
            db,
            work_order_id,
            actor,
            scheduled_at=body.scheduled_at,
            estimated_duration_min=body.estimated_duration_min,
            notes=body.notes,
            response_minutes=body.response_minutes,
            **kwargs,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.post(
    "/{work_order_id}/cancel",
    response_model=WorkOrderResultOut,
    summary="Cancel a work order",
)
async def cancel_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: CancelRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.cancel(db, work_order_id, actor, reason=body.reason)
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.post(
    "/{work_order_id}/reschedule",
    response_model=WorkOrderResultOut,
    summary="Move the scheduled time",
)
async def reschedule_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: RescheduleRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.reschedule(
            db,
            work_order_id,
            actor,
            scheduled_at=body.scheduled_at,
            estimated_duration_min=body.estimated_duration_min,
            notes=body.notes,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


# ---------------------------------------------------------------------------
# Technician operations
# ---------------------------------------------------------------------------

@router.post(
    "/{work_order_id}/respond",
    response_model=WorkOrderResultOut,
    summary="Accept or decline an assignment",
    description=(
        "Only the assigned technician, only while the response window is open. "
        "A response after the window closed returns 410."
    ),
)
async def respond_to_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: RespondRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.respond(
            db, work_order_id, actor, body.action, decline_reason=body.decline_reason,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.post(
    "/{work_order_id}/start",
    response_model=WorkOrderResultOut,
    summary="Check in on site and start work",
)
async def start_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: StartRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.start(
            db, work_order_id, actor, latitude=body.latitude, longitude=body.longitude,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.post(
    "/{work_order_id}/complete",
    response_model=WorkOrderResultOut,
    summary="Complete the work",
)
async def complete_work_order(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
    body: CompleteRequest,
) -> WorkOrderResultOut:
    try:
        result = await workOrderService.complete(
            db, work_order_id, actor, notes=body.notes, materials=body.materials,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return _result_out(result)


@router.get(
    "/{work_order_id}/remaining-time",
    response_model=RemainingTimeOut,
    summary="Remaining response window",
)
async def get_remaining_time(
    db: DBSession,
    actor: CurrentActor,
    work_order_id: int,
) -> RemainingTimeOut:
    try:
        await workOrderService.get_visible_work_order(db, work_order_id, actor)
    except DispatchError as exc:
        raise http_error(exc)
    remaining = get_scheduler().remaining_time(work_order_id)
    if remaining is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active response deadline for work order '{work_order_id}'.",
        )
    return RemainingTimeOut.model_validate(remaining)
