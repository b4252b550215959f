"""
SQLAlchemy model for in-app notifications delivered by the notification
gateway.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class NotificationType(str, enum.Enum):
    """Classification of notification events."""
    WO_ASSIGNED = "WO_ASSIGNED"
    WO_ACCEPTED = "WO_ACCEPTED"
    WO_DECLINED = "WO_DECLINED"
    WO_EXPIRED = "WO_EXPIRED"
    WO_TIMEOUT_WARNING = "WO_TIMEOUT_WARNING"
    WO_STARTED = "WO_STARTED"
    WO_COMPLETED = "WO_COMPLETED"
    WO_CANCELLED = "WO_CANCELLED"
    WO_RESCHEDULED = "WO_RESCHEDULED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    COMMISSION_PAID = "COMMISSION_PAID"
    PAYOUT_REQUEST_REJECTED = "PAYOUT_REQUEST_REJECTED"


class Notification(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """A single notification stored for the in-app notification center."""
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", native_enum=False, length=32),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Notification id={self.id} type={self.type.value} user={self.user_id}>"
