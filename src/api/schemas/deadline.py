"""Pydantic v2 schemas for response-deadline views."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RemainingTimeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expired: bool
    minutes: int
    deadline: datetime


class DeadlineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    work_order_id: int
    technician_id: Optional[int] = None
    deadline: datetime
    warning_at: Optional[datetime] = None
    expired: bool
    minutes_remaining: int
    needs_reconcile: bool


class ReconcileReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expired: list[int]
    restored: list[int]
    already_handled: list[int]
    failed: list[int]
