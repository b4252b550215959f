"""
SQLAlchemy models for work orders and technician on-site check-ins.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin, UTCDateTime


class WorkOrderStatus(str, enum.Enum):
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED_PENDING_PAYMENT = "COMPLETED_PENDING_PAYMENT"
    PAID_VERIFIED = "PAID_VERIFIED"
    CANCELLED = "CANCELLED"


class WorkOrder(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """A dispatched job.

    ``response_deadline_at`` mirrors the in-memory response deadline while the
    order is ASSIGNED so pending deadlines can be rebuilt after a restart.
    """

    __tablename__ = "work_orders"
    __table_args__ = (
        Index("ix_work_orders_status", "status"),
        Index("ix_work_orders_technician_id", "technician_id"),
        Index("ix_work_orders_response_deadline_at", "response_deadline_at"),
    )

    wo_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    technician_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    dispatcher_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    sr_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[WorkOrderStatus] = mapped_column(
        Enum(WorkOrderStatus, name="work_order_status", native_enum=False, length=32),
        nullable=False,
        default=WorkOrderStatus.UNASSIGNED,
    )

    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estimated_duration_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    response_deadline_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # Technician whose response window ran out; cleared on the next assignment.
    response_expired_technician_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True,
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    paid_verified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    materials_used: Mapped[Optional[list[Any]]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<WorkOrder id={self.id} number={self.wo_number} status={self.status.value}>"


class TechnicianCheckin(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "technician_checkins"

    wo_id: Mapped[int] = mapped_column(ForeignKey("work_orders.id"), nullable=False, index=True)
    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    latitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)
    longitude: Mapped[Decimal] = mapped_column(Numeric(10, 7), nullable=False)
    checked_in_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
