"""
Pydantic v2 schemas for the Work Order API
==========================================

Request bodies for every lifecycle operation plus the work order read model.
Responses embed the active response deadline when the order is ASSIGNED.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.models.work_order import WorkOrderStatus
from src.services.workOrderService import RespondAction


class PaginationMeta(BaseModel):
    """Pagination metadata included in every paginated response."""

    page: int = Field(ge=1, description="Current page number (1-indexed)")
    page_size: int = Field(ge=1, description="Number of items per page")
    total_items: int = Field(ge=0, description="Total number of matching items")
    total_pages: int = Field(ge=0, description="Total number of pages")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class WorkOrderCreateRequest(BaseModel):
    customer_id: int
    technician_id: Optional[int] = Field(
        default=None, description="Assign immediately when provided"
    )
    sr_id: Optional[int] = Field(default=None, description="Originating service request")
    scheduled_at: Optional[datetime] = None
    address: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None
    estimated_duration_min: Optional[int] = Field(default=None, ge=1)
    response_minutes: Optional[int] = Field(default=None, ge=1)


class AssignRequest(BaseModel):
    technician_id: int
    response_minutes: Optional[int] = Field(default=None, ge=1)


class ReassignRequest(BaseModel):
    """Omit ``technician_id`` to keep the current one; send null to unassign."""

    technician_id: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    estimated_duration_min: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    response_minutes: Optional[int] = Field(default=None, ge=1)


class RespondRequest(BaseModel):
    action: RespondAction
    decline_reason: Optional[str] = Field(default=None, max_length=500)


class StartRequest(BaseModel):
    latitude: Decimal
    longitude: Decimal


class CompleteRequest(BaseModel):
    notes: Optional[str] = None
    materials: Optional[Any] = Field(
        default=None,
        description="JSON list of materials used, or a JSON string encoding one",
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    scheduled_at: datetime
    estimated_duration_min: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class WorkOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wo_number: str
    customer_id: int
    technician_id: Optional[int] = None
    dispatcher_id: Optional[int] = None
    sr_id: Optional[int] = None
    status: WorkOrderStatus
    address: Optional[str] = None
    notes: Optional[str] = None
    estimated_duration_min: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    response_deadline_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paid_verified_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    completion_notes: Optional[str] = None
    materials_used: Optional[list[Any]] = None
    created_at: datetime
    updated_at: datetime


class WorkOrderResultOut(BaseModel):
    work_order: WorkOrderOut
    deadline: Optional[datetime] = None


class WorkOrderListResponse(BaseModel):
    data: list[WorkOrderOut]
    meta: PaginationMeta
