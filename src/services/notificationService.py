"""
Notification Service
====================

Orchestration layer between business logic (work-order state machine,
deadline scheduler, compensation ledger) and the notification gateway.

Notifications are fire-and-forget.  Each ``notify_*`` helper builds the
payload and queues it on the session with ``after_commit``; delivery happens
only once the triggering transaction has committed, and a delivery failure is
logged and swallowed so it can never undo a state or ledger change.

The gateway is pluggable.  The default ``StoredNotificationGateway`` persists
a ``Notification`` row for the in-app notification center in its own short
transaction and logs the push hand-off; push/SMS transport is external.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import partial
from typing import Any, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import SessionFactory, after_commit, session_scope
from src.models.notification import Notification, NotificationType
from src.models.work_order import WorkOrder

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Gateway contract
# ---------------------------------------------------------------------------

class NotificationGateway(Protocol):
    async def send(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> None:
        ...


class StoredNotificationGateway:
    """Stores the notification for in-app history and hands it to push."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory

    async def send(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> None:
        async with session_scope(self._session_factory) as db:
            await _store_notification(db, user_id, notification_type, title, message, data)
        logger.info(
            "Push dispatch: user=%s type=%s title=%r",
            user_id,
            notification_type.value,
            title,
        )


_gateway: NotificationGateway = StoredNotificationGateway()


def get_gateway() -> NotificationGateway:
    return _gateway


def set_gateway(gateway: NotificationGateway) -> NotificationGateway:
    """Swap the active gateway. Returns the previous one."""
    global _gateway
    previous = _gateway
    _gateway = gateway
    return previous


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _store_notification(
    db: AsyncSession,
    user_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None,
) -> Notification:
    """Persist a notification record for in-app notification history."""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    db.add(notification)
    await db.flush()
    return notification


async def _deliver(
    user_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any],
) -> None:
    try:
        await _gateway.send(user_id, notification_type, title, message, data)
    except Exception:
        logger.exception(
            "Notification delivery failed: user=%s type=%s",
            user_id,
            notification_type.value,
        )


def queue_notification(
    db: AsyncSession,
    user_id: Optional[int],
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Queue a notification for delivery after ``db`` commits.

    Returns False (and queues nothing) when there is no recipient.
    """
    if user_id is None:
        logger.debug("Skipping %s notification: no recipient", notification_type.value)
        return False

    payload = {"type": notification_type.value, **(data or {})}
    after_commit(db, partial(_deliver, user_id, notification_type, title, message, payload))
    return True


def _format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _wo_data(wo: WorkOrder, **extra: Any) -> dict[str, Any]:
    return {"wo_id": wo.id, "wo_number": wo.wo_number, **extra}


# ---------------------------------------------------------------------------
# Public API -- Work order lifecycle notifications
# ---------------------------------------------------------------------------

def notify_wo_assigned(db: AsyncSession, wo: WorkOrder, deadline_minutes: int) -> bool:
    """Tell the technician a work order is waiting for their response."""
    return queue_notification(
        db,
        wo.technician_id,
        NotificationType.WO_ASSIGNED,
        "New Work Order Assigned",
        f"Work order {wo.wo_number} has been assigned to you. "
        f"Please respond within {deadline_minutes} minutes.",
        _wo_data(wo, deadline_minutes=deadline_minutes),
    )


def notify_wo_accepted(db: AsyncSession, wo: WorkOrder) -> bool:
    return queue_notification(
        db,
        wo.dispatcher_id,
        NotificationType.WO_ACCEPTED,
        "Work Order Accepted",
        f"Work order {wo.wo_number} was accepted by the technician.",
        _wo_data(wo, technician_id=wo.technician_id),
    )


def notify_wo_declined(
    db: AsyncSession, wo: WorkOrder, technician_id: int, reason: Optional[str],
) -> bool:
    return queue_notification(
        db,
        wo.dispatcher_id,
        NotificationType.WO_DECLINED,
        "Work Order Declined",
        f"Work order {wo.wo_number} was declined"
        + (f": {reason}" if reason else "."),
        _wo_data(wo, technician_id=technician_id, reason=reason),
    )


def notify_response_expired(db: AsyncSession, wo: WorkOrder, technician_id: int) -> bool:
    return queue_notification(
        db,
        wo.dispatcher_id,
        NotificationType.WO_EXPIRED,
        "Work Order Response Expired",
        f"Work order {wo.wo_number} was not answered in time and is back in the queue.",
        _wo_data(wo, technician_id=technician_id),
    )


def notify_timeout_warning(db: AsyncSession, wo: WorkOrder, minutes_left: int) -> bool:
    return queue_notification(
        db,
        wo.technician_id,
        NotificationType.WO_TIMEOUT_WARNING,
        "Response Time Running Out",
        f"Only {minutes_left} minutes left to respond to work order {wo.wo_number}.",
        _wo_data(wo, minutes_left=minutes_left),
    )


def notify_wo_started(db: AsyncSession, wo: WorkOrder) -> bool:
    return queue_notification(
        db,
        wo.customer_id,
        NotificationType.WO_STARTED,
        "Technician Has Arrived",
        f"The technician has checked in and started work order {wo.wo_number}.",
        _wo_data(wo),
    )


def notify_wo_completed(db: AsyncSession, wo: WorkOrder) -> bool:
    return queue_notification(
        db,
        wo.dispatcher_id,
        NotificationType.WO_COMPLETED,
        "Work Order Completed",
        f"Work order {wo.wo_number} was completed and awaits payment verification.",
        _wo_data(wo, technician_id=wo.technician_id),
    )


def notify_wo_cancelled(db: AsyncSession, wo: WorkOrder, technician_id: Optional[int]) -> bool:
    """Tell the technician who held the order, if any, that it was cancelled."""
    return queue_notification(
        db,
        technician_id,
        NotificationType.WO_CANCELLED,
        "Work Order Cancelled",
        f"Work order {wo.wo_number} has been cancelled.",
        _wo_data(wo, reason=wo.cancel_reason),
    )


def notify_wo_rescheduled(db: AsyncSession, wo: WorkOrder) -> bool:
    return queue_notification(
        db,
        wo.technician_id,
        NotificationType.WO_RESCHEDULED,
        "Work Order Rescheduled",
        f"Work order {wo.wo_number} has a new schedule.",
        _wo_data(wo, scheduled_at=wo.scheduled_at.isoformat() if wo.scheduled_at else None),
    )


# ---------------------------------------------------------------------------
# Public API -- Payment and payout notifications
# ---------------------------------------------------------------------------

def notify_payment_verified(
    db: AsyncSession, wo: WorkOrder, payment_id: int, earned: Decimal,
) -> bool:
    return queue_notification(
        db,
        wo.technician_id,
        NotificationType.PAYMENT_VERIFIED,
        "Payment Verified",
        f"Payment for work order {wo.wo_number} was verified. "
        f"You earned {_format_amount(earned)}.",
        _wo_data(wo, payment_id=payment_id, earned=str(earned)),
    )


def notify_payment_rejected(
    db: AsyncSession, technician_id: int, payment_id: int, reason: Optional[str],
) -> bool:
    return queue_notification(
        db,
        technician_id,
        NotificationType.PAYMENT_REJECTED,
        "Payment Rejected",
        "Your payment submission was rejected" + (f": {reason}" if reason else "."),
        {"payment_id": payment_id, "reason": reason},
    )


def notify_commission_paid(
    db: AsyncSession, technician_id: int, payout_id: int, amount: Decimal,
) -> bool:
    return queue_notification(
        db,
        technician_id,
        NotificationType.COMMISSION_PAID,
        "Payout Sent",
        f"A payout of {_format_amount(amount)} has been sent to you.",
        {"payout_id": payout_id, "amount": str(amount)},
    )


def notify_payout_request_rejected(
    db: AsyncSession, technician_id: int, request_id: int, reason: Optional[str],
) -> bool:
    return queue_notification(
        db,
        technician_id,
        NotificationType.PAYOUT_REQUEST_REJECTED,
        "Payout Request Rejected",
        "Your early payout request was rejected" + (f": {reason}" if reason else "."),
        {"request_id": request_id, "reason": reason},
    )
