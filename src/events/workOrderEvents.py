"""
Work Order Event Emission
=========================

Event system for work-order lifecycle state changes. Each function emits an
event that downstream consumers (analytics, dashboards) can subscribe to.

The transport layer is not wired yet: each emitter logs the event and
returns the event payload dict so callers can integrate with it immediately.

Events emitted:
  - work_order.created
  - work_order.status_changed
  - work_order.technician_assigned
  - work_order.technician_reassigned
  - work_order.response_expired
  - work_order.cancelled
  - work_order.rescheduled
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _build_event(
    event_type: str,
    work_order_id: int,
    *,
    data: dict[str, Any] | None = None,
    actor_id: int | None = None,
) -> dict[str, Any]:
    """Construct a standardised event payload."""
    return {
        "event_type": event_type,
        "work_order_id": work_order_id,
        "actor_id": actor_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data or {},
    }


def emit_work_order_created(
    work_order_id: int,
    wo_number: str,
    customer_id: int,
    actor_id: int | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "work_order.created",
        work_order_id,
        actor_id=actor_id,
        data={"wo_number": wo_number, "customer_id": customer_id},
    )
    logger.info("Event emitted: %s for work order %s", event["event_type"], work_order_id)
    return event


def emit_status_changed(
    work_order_id: int,
    old_status: str,
    new_status: str,
    actor_id: int | None = None,
) -> dict[str, Any]:
    """Emit event when a work order transitions between states."""
    event = _build_event(
        "work_order.status_changed",
        work_order_id,
        actor_id=actor_id,
        data={"old_status": old_status, "new_status": new_status},
    )
    logger.info(
        "Event emitted: %s for work order %s (%s -> %s)",
        event["event_type"],
        work_order_id,
        old_status,
        new_status,
    )
    return event


def emit_technician_assigned(
    work_order_id: int,
    technician_id: int,
    deadline: datetime,
    actor_id: int | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "work_order.technician_assigned",
        work_order_id,
        actor_id=actor_id,
        data={"technician_id": technician_id, "deadline": deadline.isoformat()},
    )
    logger.info(
        "Event emitted: %s for work order %s (technician=%s)",
        event["event_type"],
        work_order_id,
        technician_id,
    )
    return event


def emit_technician_reassigned(
    work_order_id: int,
    previous_technician_id: int | None,
    new_technician_id: int | None,
    actor_id: int | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "work_order.technician_reassigned",
        work_order_id,
        actor_id=actor_id,
        data={
            "previous_technician_id": previous_technician_id,
            "new_technician_id": new_technician_id,
        },
    )
    logger.info(
        "Event emitted: %s for work order %s (%s -> %s)",
        event["event_type"],
        work_order_id,
        previous_technician_id,
        new_technician_id,
    )
    return event


def emit_response_expired(work_order_id: int, technician_id: int | None) -> dict[str, Any]:
    event = _build_event(
        "work_order.response_expired",
        work_order_id,
        data={"technician_id": technician_id},
    )
    logger.info(
        "Event emitted: %s for work order %s (technician=%s)",
        event["event_type"],
        work_order_id,
        technician_id,
    )
    return event


def emit_work_order_cancelled(
    work_order_id: int,
    reason: str | None,
    actor_id: int | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "work_order.cancelled",
        work_order_id,
        actor_id=actor_id,
        data={"reason": reason},
    )
    logger.info("Event emitted: %s for work order %s", event["event_type"], work_order_id)
    return event


def emit_work_order_rescheduled(
    work_order_id: int,
    scheduled_at: datetime | None,
    actor_id: int | None = None,
) -> dict[str, Any]:
    event = _build_event(
        "work_order.rescheduled",
        work_order_id,
        actor_id=actor_id,
        data={"scheduled_at": scheduled_at.isoformat() if scheduled_at else None},
    )
    logger.info("Event emitted: %s for work order %s", event["event_type"], work_order_id)
    return event
