"""
Work Order Service
==================

Business logic for the work-order lifecycle. All operations use async
SQLAlchemy sessions and enforce business rules including:

  - State machine enforcement via ``workOrderStateMachine``
  - Status writes as conditional updates keyed on the expected current
    status, so two concurrent actions can never both succeed
  - Response deadlines registered/cleared with the deadline scheduler after
    the transaction commits
  - Audit records and notifications for every state change

Key functions:
  - create_work_order  -- create, optionally with an immediate assignment
  - assign / reassign  -- attach, replace or clear the technician
  - respond            -- technician ACCEPT / DECLINE within the window
  - start / complete   -- on-site check-in and completion
  - cancel / reschedule
  - expire_response    -- deadline expiry, driven by the scheduler
  - mark_paid_verified -- driven by the compensation ledger
  - generate_wo_number -- WO-XXXXXX format
"""

from __future__ import annotations

import enum
import json
import logging
import math
import random
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import after_commit
from src.core.exceptions import (
    ConcurrentModification,
    Forbidden,
    InvalidLocation,
    InvalidMaterialsFormat,
    InvalidSchedule,
    InvalidTechnicianRole,
    InvalidTransition,
    NotAssignedToYou,
    NotFound,
    ResponseWindowExpired,
    AlreadyResponded,
    TechnicianBlocked,
    TechnicianNotFound,
    WorkOrderNotFound,
)
from src.events.workOrderEvents import (
    emit_response_expired,
    emit_status_changed,
    emit_technician_assigned,
    emit_technician_reassigned,
    emit_work_order_cancelled,
    emit_work_order_created,
    emit_work_order_rescheduled,
)
from src.models.user import LocationStatus, User, UserRole
from src.models.work_order import TechnicianCheckin, WorkOrder, WorkOrderStatus
from src.services import auditService, notificationService
from src.services.deadlineScheduler import get_scheduler
from src.services.workOrderStateMachine import (
    RESCHEDULE_LOCKED_STATUSES,
    SYSTEM_ACTOR,
    Actor,
    ActorType,
    validate_transition,
)

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT_REASON = "response timeout: technician did not respond within the time limit"

_DISPATCH_ACTORS = (ActorType.DISPATCHER, ActorType.ADMIN, ActorType.SYSTEM)


class RespondAction(str, enum.Enum):
    ACCEPT = "ACCEPT"
    DECLINE = "DECLINE"


@dataclass(frozen=True)
class WorkOrderResult:
    """A work order plus its active response deadline, when it has one."""

    work_order: WorkOrder
    deadline: Optional[datetime] = None


@dataclass(frozen=True)
class PaginatedResult:
    items: Sequence
    total_items: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.total_items == 0:
            return 0
        return math.ceil(self.total_items / self.page_size)


_UNCHANGED: Any = object()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_wo_number() -> str:
    """Generate a human-readable work order number like ``WO-7K2M9Q``."""
    chars = string.ascii_uppercase + string.digits
    return "WO-" + "".join(random.choices(chars, k=6))


async def get_work_order(db: AsyncSession, work_order_id: int) -> WorkOrder:
    wo = await db.get(WorkOrder, work_order_id)
    if wo is None:
        raise WorkOrderNotFound(work_order_id)
    return wo


def can_view(wo: WorkOrder, actor: Actor) -> bool:
    """Customers see their own orders, technicians the ones they hold."""
    if actor.actor_type == ActorType.CUSTOMER:
        return wo.customer_id == actor.id
    if actor.actor_type == ActorType.TECHNICIAN:
        return wo.technician_id == actor.id
    return True


async def get_visible_work_order(
    db: AsyncSession, work_order_id: int, actor: Actor,
) -> WorkOrder:
    wo = await get_work_order(db, work_order_id)
    if not can_view(wo, actor):
        raise Forbidden(f"Work order '{wo.id}' is not visible to user '{actor.id}'.")
    return wo


def _scope_listing(
    actor: Optional[Actor],
    technician_id: Optional[int],
    customer_id: Optional[int],
) -> tuple[Optional[int], Optional[int]]:
    if actor is None:
        return technician_id, customer_id
    if actor.actor_type == ActorType.CUSTOMER:
        if customer_id not in (None, actor.id):
            raise Forbidden("Customers may only list their own work orders.")
        return technician_id, actor.id
    if actor.actor_type == ActorType.TECHNICIAN:
        if technician_id not in (None, actor.id):
            raise Forbidden("Technicians may only list work orders assigned to them.")
        return actor.id, customer_id
    return technician_id, customer_id


async def list_work_orders(
    db: AsyncSession,
    *,
    actor: Optional[Actor] = None,
    status: Optional[WorkOrderStatus] = None,
    technician_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResult:
    """Page through work orders, narrowed to what ``actor`` may see when given."""
    technician_id, customer_id = _scope_listing(actor, technician_id, customer_id)
    filters = []
    if status is not None:
        filters.append(WorkOrder.status == status)
    if technician_id is not None:
        filters.append(WorkOrder.technician_id == technician_id)
    if customer_id is not None:
        filters.append(WorkOrder.customer_id == customer_id)

    total = (
        await db.execute(select(func.count(WorkOrder.id)).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(WorkOrder)
        .where(*filters)
        .order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaginatedResult(
        items=result.scalars().all(),
        total_items=total,
        page=page,
        page_size=page_size,
    )


async def _get_assignable_technician(db: AsyncSession, technician_id: int) -> User:
    technician = await db.get(User, technician_id)
    if technician is None:
        raise TechnicianNotFound(technician_id)
    if not technician.is_technician:
        raise InvalidTechnicianRole(technician_id, technician.role.value)
    if technician.is_blocked:
        raise TechnicianBlocked(technician_id)
    return technician


def _require_actor(actor: Actor, *allowed: ActorType, action: str) -> None:
    if actor.actor_type not in allowed:
        raise Forbidden(f"Actor '{actor.actor_type.value}' is not allowed to {action}.")


def _require_assigned_technician(wo: WorkOrder, actor: Actor) -> None:
    if actor.actor_type == ActorType.SYSTEM:
        return
    if actor.actor_type != ActorType.TECHNICIAN or wo.technician_id != actor.id:
        raise NotAssignedToYou(wo.id, actor.id)


def _lost_to_timeout(wo: WorkOrder, technician_id: Optional[int]) -> bool:
    """True if this technician's response window on the order ran out."""
    if technician_id is None:
        return False
    return (
        wo.response_expired_technician_id == technician_id
        or get_scheduler().expired_for(wo.id, technician_id)
    )


def _active_deadline(wo: WorkOrder) -> Optional[datetime]:
    if wo.status != WorkOrderStatus.ASSIGNED:
        return None
    entry = get_scheduler().get(wo.id)
    return entry.deadline if entry is not None else wo.response_deadline_at


def _validate_location(latitude: Any, longitude: Any) -> tuple[Decimal, Decimal]:
    if latitude is None or longitude is None:
        raise InvalidLocation("Check-in requires both latitude and longitude.")
    try:
        lat = Decimal(str(latitude))
        lng = Decimal(str(longitude))
    except InvalidOperation as exc:
        raise InvalidLocation(
            f"Coordinates must be numeric, got ({latitude!r}, {longitude!r})."
        ) from exc
    if not (lat.is_finite() and lng.is_finite()):
        raise InvalidLocation("Coordinates must be finite numbers.")
    if not Decimal(-90) <= lat <= Decimal(90):
        raise InvalidLocation(f"Latitude {lat} is outside -90..90.")
    if not Decimal(-180) <= lng <= Decimal(180):
        raise InvalidLocation(f"Longitude {lng} is outside -180..180.")
    return lat, lng


def _parse_materials(materials: Any) -> Optional[list[Any]]:
    if materials is None:
        return None
    if isinstance(materials, str):
        try:
            materials = json.loads(materials)
        except ValueError as exc:
            raise InvalidMaterialsFormat(f"Materials must be a JSON list: {exc}") from exc
    if not isinstance(materials, list):
        raise InvalidMaterialsFormat(
            f"Materials must be a list, got {type(materials).__name__}."
        )
    return materials


def _validate_future(scheduled_at: datetime, now: datetime) -> None:
    if scheduled_at.tzinfo is None:
        raise InvalidSchedule("Scheduled time must include a timezone offset.")
    if scheduled_at <= now:
        raise InvalidSchedule(
            f"Scheduled time {scheduled_at.isoformat()} is not in the future."
        )


async def _transition(
    db: AsyncSession,
    wo: WorkOrder,
    target: WorkOrderStatus,
    actor: Actor,
    *,
    extra_where: Sequence[Any] = (),
    **values: Any,
) -> WorkOrder:
    """Validate and apply ``wo.status -> target`` as a conditional update.

    Raises ``ConcurrentModification`` when the row no longer matches the
    status (and ``extra_where`` conditions) this call was based on.
    """
    expected = wo.status
    check = validate_transition(expected, target, actor.actor_type)
    if not check.allowed:
        raise InvalidTransition(check.reason or "Transition not allowed.")

    await db.flush()
    stmt = (
        update(WorkOrder)
        .where(WorkOrder.id == wo.id, WorkOrder.status == expected, *extra_where)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        await db.refresh(wo)
        raise ConcurrentModification(wo.id, expected.value)
    await db.refresh(wo)

    emit_status_changed(wo.id, expected.value, target.value, actor_id=actor.id)
    logger.info(
        "Work order %s transitioned: %s -> %s (actor=%s, type=%s)",
        wo.id,
        expected.value,
        target.value,
        actor.id,
        actor.actor_type.value,
    )
    return wo


def _schedule_deadline(
    db: AsyncSession, wo_id: int, deadline: datetime, technician_id: int,
) -> None:
    scheduler = get_scheduler()
    after_commit(
        db,
        partial(scheduler.set_deadline, wo_id, deadline=deadline, technician_id=technician_id),
    )


def _clear_deadline(db: AsyncSession, wo_id: int) -> None:
    after_commit(db, partial(get_scheduler().clear_deadline, wo_id))


def _forget_work_order(db: AsyncSession, wo_id: int) -> None:
    after_commit(db, partial(get_scheduler().forget, wo_id))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_work_order(
    db: AsyncSession,
    actor: Actor,
    *,
    customer_id: int,
    technician_id: Optional[int] = None,
    sr_id: Optional[int] = None,
    scheduled_at: Optional[datetime] = None,
    address: Optional[str] = None,
    notes: Optional[str] = None,
    estimated_duration_min: Optional[int] = None,
    response_minutes: Optional[int] = None,
) -> WorkOrderResult:
    """Create a work order. With ``technician_id`` it is assigned immediately."""
    _require_actor(actor, *_DISPATCH_ACTORS, action="create work orders")

    customer = await db.get(User, customer_id)
    if customer is None or customer.role != UserRole.CUSTOMER:
        raise NotFound(f"Customer with id '{customer_id}' not found.")
    if scheduled_at is not None:
        _validate_future(scheduled_at, get_scheduler().now())

    wo_number = generate_wo_number()
    while (
        await db.execute(select(WorkOrder.id).where(WorkOrder.wo_number == wo_number))
    ).first() is not None:
        wo_number = generate_wo_number()

    wo = WorkOrder(
        wo_number=wo_number,
        customer_id=customer_id,
        dispatcher_id=actor.id,
        sr_id=sr_id,
        status=WorkOrderStatus.UNASSIGNED,
        scheduled_at=scheduled_at,
        address=address,
        notes=notes,
        estimated_duration_min=estimated_duration_min,
    )
    db.add(wo)
    await db.flush()

    auditService.record(
        db,
        action="WO_CREATED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={"wo_number": wo_number, "customer_id": customer_id, "sr_id": sr_id},
    )
    emit_work_order_created(wo.id, wo_number, customer_id, actor_id=actor.id)
    logger.info("Work order created: id=%s number=%s customer=%s", wo.id, wo_number, customer_id)

    if technician_id is not None:
        return await assign(db, wo.id, technician_id, actor, response_minutes=response_minutes)
    return WorkOrderResult(work_order=wo)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

async def assign(
    db: AsyncSession,
    work_order_id: int,
    technician_id: int,
    actor: Actor,
    *,
    response_minutes: Optional[int] = None,
) -> WorkOrderResult:
    """Assign (or reassign) a technician and start their response window.

    Reassigning to the technician already holding the order is a no-op and
    does not restart the window.
    """
    wo = await get_work_order(db, work_order_id)
    _require_actor(actor, *_DISPATCH_ACTORS, action="assign technicians")
    await _get_assignable_technician(db, technician_id)

    if (
        wo.status in (WorkOrderStatus.ASSIGNED, WorkOrderStatus.ACCEPTED)
        and wo.technician_id == technician_id
    ):
        logger.info(
            "Work order %s already held by technician %s; assignment unchanged",
            wo.id,
            technician_id,
        )
        return WorkOrderResult(work_order=wo, deadline=_active_deadline(wo))

    scheduler = get_scheduler()
    minutes = response_minutes or scheduler.response_minutes
    now = scheduler.now()
    deadline = scheduler.compute_deadline(minutes)
    previous_technician = wo.technician_id

    await _transition(
        db,
        wo,
        WorkOrderStatus.ASSIGNED,
        actor,
        technician_id=technician_id,
        dispatcher_id=actor.id if actor.id is not None else wo.dispatcher_id,
        assigned_at=now,
        response_deadline_at=deadline,
        accepted_at=None,
        cancel_reason=None,
        response_expired_technician_id=None,
    )
    _schedule_deadline(db, wo.id, deadline, technician_id)

    reassigned = previous_technician is not None
    auditService.record(
        db,
        action="WO_REASSIGNED" if reassigned else "WO_ASSIGNED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={
            "technician_id": technician_id,
            "previous_technician_id": previous_technician,
            "response_deadline": deadline.isoformat(),
        },
    )
    notificationService.notify_wo_assigned(db, wo, minutes)
    if reassigned:
        emit_technician_reassigned(wo.id, previous_technician, technician_id, actor_id=actor.id)
    emit_technician_assigned(wo.id, technician_id, deadline, actor_id=actor.id)

    return WorkOrderResult(work_order=wo, deadline=deadline)


async def _unassign(db: AsyncSession, wo: WorkOrder, actor: Actor) -> WorkOrderResult:
    previous_technician = wo.technician_id
    await _transition(
        db,
        wo,
        WorkOrderStatus.UNASSIGNED,
        actor,
        technician_id=None,
        assigned_at=None,
        accepted_at=None,
        response_deadline_at=None,
    )
    _clear_deadline(db, wo.id)
    auditService.record(
        db,
        action="WO_UNASSIGNED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={"previous_technician_id": previous_technician},
    )
    notificationService.notify_wo_cancelled(db, wo, previous_technician)
    emit_technician_reassigned(wo.id, previous_technician, None, actor_id=actor.id)
    return WorkOrderResult(work_order=wo)


async def reassign(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    *,
    technician_id: Optional[int] = _UNCHANGED,
    scheduled_at: Optional[datetime] = None,
    estimated_duration_min: Optional[int] = None,
    notes: Optional[str] = None,
    response_minutes: Optional[int] = None,
) -> WorkOrderResult:
    """Change the technician and/or schedule details of an open work order.

    ``technician_id=None`` returns the order to the unassigned queue; leaving
    it out keeps the current technician.
    """
    wo = await get_work_order(db, work_order_id)
    _require_actor(actor, *_DISPATCH_ACTORS, action="reassign work orders")
    if wo.status not in (
        WorkOrderStatus.UNASSIGNED,
        WorkOrderStatus.ASSIGNED,
        WorkOrderStatus.ACCEPTED,
    ):
        raise InvalidTransition(
            f"Work order '{wo.id}' cannot be reassigned in status {wo.status.value}."
        )

    if scheduled_at is not None:
        _validate_future(scheduled_at, get_scheduler().now())
        wo.scheduled_at = scheduled_at
    if estimated_duration_min is not None:
        wo.estimated_duration_min = estimated_duration_min
    if notes is not None:
        wo.notes = notes

    if technician_id is _UNCHANGED or technician_id == wo.technician_id:
        await db.flush()
        return WorkOrderResult(work_order=wo, deadline=_active_deadline(wo))
    if technician_id is None:
        return await _unassign(db, wo, actor)
    return await assign(db, wo.id, technician_id, actor, response_minutes=response_minutes)


# ---------------------------------------------------------------------------
# Technician response
# ---------------------------------------------------------------------------

async def respond(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    action: RespondAction,
    *,
    decline_reason: Optional[str] = None,
) -> WorkOrderResult:
    """Accept or decline an assignment inside the response window."""
    wo = await get_work_order(db, work_order_id)
    scheduler = get_scheduler()

    if actor.actor_type != ActorType.TECHNICIAN:
        raise NotAssignedToYou(wo.id, actor.id)
    if wo.status != WorkOrderStatus.ASSIGNED:
        if _lost_to_timeout(wo, actor.id):
            raise ResponseWindowExpired(wo.id)
        if wo.technician_id == actor.id:
            raise AlreadyResponded(wo.id, wo.status.value)
        raise NotAssignedToYou(wo.id, actor.id)
    if wo.technician_id != actor.id:
        raise NotAssignedToYou(wo.id, actor.id)

    now = scheduler.now()
    remaining = scheduler.remaining_time(wo.id)
    if (remaining is not None and remaining.expired) or (
        wo.response_deadline_at is not None and now >= wo.response_deadline_at
    ):
        raise ResponseWindowExpired(wo.id)

    technician_id = wo.technician_id
    try:
        if action == RespondAction.ACCEPT:
            await _transition(
                db,
                wo,
                WorkOrderStatus.ACCEPTED,
                actor,
                extra_where=(WorkOrder.technician_id == actor.id,),
                accepted_at=now,
                response_deadline_at=None,
            )
        else:
            await _transition(
                db,
                wo,
                WorkOrderStatus.UNASSIGNED,
                actor,
                extra_where=(WorkOrder.technician_id == actor.id,),
                technician_id=None,
                assigned_at=None,
                response_deadline_at=None,
                cancel_reason=decline_reason,
            )
    except ConcurrentModification:
        if wo.status == WorkOrderStatus.UNASSIGNED and wo.cancel_reason == RESPONSE_TIMEOUT_REASON:
            raise ResponseWindowExpired(wo.id)
        if wo.technician_id != actor.id:
            raise NotAssignedToYou(wo.id, actor.id)
        raise AlreadyResponded(wo.id, wo.status.value)

    _clear_deadline(db, wo.id)

    if action == RespondAction.ACCEPT:
        audit_action = "WO_ACCEPTED"
        notificationService.notify_wo_accepted(db, wo)
    else:
        audit_action = "WO_DECLINED"
        notificationService.notify_wo_declined(db, wo, technician_id, decline_reason)
    auditService.record(
        db,
        action=audit_action,
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={
            "minutes_remaining": remaining.minutes if remaining else None,
            "decline_reason": decline_reason,
        },
    )
    return WorkOrderResult(work_order=wo)


async def expire_response(
    db: AsyncSession,
    work_order_id: int,
    *,
    now: datetime,
    technician_id: Optional[int] = None,
) -> Optional[WorkOrder]:
    """Return an unanswered order to dispatch after its window elapsed.

    Returns None when there is nothing to do: the order was answered,
    reassigned or cancelled, or its persisted deadline has not elapsed.
    """
    wo = await db.get(WorkOrder, work_order_id)
    if wo is None or wo.status != WorkOrderStatus.ASSIGNED:
        return None

    conditions = [
        or_(
            WorkOrder.response_deadline_at.is_(None),
            WorkOrder.response_deadline_at <= now,
        ),
    ]
    if technician_id is not None:
        conditions.append(WorkOrder.technician_id == technician_id)

    expired_technician = wo.technician_id
    try:
        await _transition(
            db,
            wo,
            WorkOrderStatus.UNASSIGNED,
            SYSTEM_ACTOR,
            extra_where=conditions,
            technician_id=None,
            assigned_at=None,
            response_deadline_at=None,
            cancel_reason=RESPONSE_TIMEOUT_REASON,
            response_expired_technician_id=expired_technician,
        )
    except ConcurrentModification:
        logger.info("Expiry of work order %s lost to a concurrent change", work_order_id)
        return None

    auditService.record(
        db,
        action="WO_RESPONSE_EXPIRED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        metadata={"technician_id": expired_technician, "reason": RESPONSE_TIMEOUT_REASON},
    )
    notificationService.notify_response_expired(db, wo, expired_technician)
    emit_response_expired(wo.id, expired_technician)
    return wo


# ---------------------------------------------------------------------------
# On-site work
# ---------------------------------------------------------------------------

async def start(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    *,
    latitude: Any,
    longitude: Any,
) -> WorkOrderResult:
    """Check in at the site and begin work."""
    lat, lng = _validate_location(latitude, longitude)
    wo = await get_work_order(db, work_order_id)
    _require_assigned_technician(wo, actor)

    now = get_scheduler().now()
    await _transition(db, wo, WorkOrderStatus.IN_PROGRESS, actor, started_at=now)

    db.add(
        TechnicianCheckin(
            wo_id=wo.id,
            technician_id=wo.technician_id,
            latitude=lat,
            longitude=lng,
            checked_in_at=now,
        )
    )
    await db.execute(
        update(User)
        .where(User.id == wo.technician_id)
        .values(location_status=LocationStatus.BUSY)
        .execution_options(synchronize_session=False)
    )

    auditService.record(
        db,
        action="WO_STARTED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={"latitude": str(lat), "longitude": str(lng)},
    )
    notificationService.notify_wo_started(db, wo)
    return WorkOrderResult(work_order=wo)


async def complete(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    *,
    notes: Optional[str] = None,
    materials: Any = None,
) -> WorkOrderResult:
    materials_used = _parse_materials(materials)
    wo = await get_work_order(db, work_order_id)
    _require_assigned_technician(wo, actor)

    await _transition(
        db,
        wo,
        WorkOrderStatus.COMPLETED_PENDING_PAYMENT,
        actor,
        completed_at=get_scheduler().now(),
        completion_notes=notes,
        materials_used=materials_used,
    )

    auditService.record(
        db,
        action="WO_COMPLETED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={"materials_count": len(materials_used) if materials_used else 0},
    )
    notificationService.notify_wo_completed(db, wo)
    return WorkOrderResult(work_order=wo)


# ---------------------------------------------------------------------------
# Cancellation and rescheduling
# ---------------------------------------------------------------------------

async def cancel(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    *,
    reason: Optional[str] = None,
) -> WorkOrderResult:
    """Cancel a work order. Customers may only cancel their own."""
    wo = await get_work_order(db, work_order_id)
    if actor.actor_type == ActorType.CUSTOMER and wo.customer_id != actor.id:
        raise Forbidden(f"Customer '{actor.id}' cannot cancel work order '{wo.id}'.")

    previous_technician = wo.technician_id
    await _transition(
        db,
        wo,
        WorkOrderStatus.CANCELLED,
        actor,
        cancelled_at=get_scheduler().now(),
        cancel_reason=reason,
        technician_id=None,
        response_deadline_at=None,
        response_expired_technician_id=None,
    )
    _forget_work_order(db, wo.id)

    auditService.record(
        db,
        action="WO_CANCELLED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={"reason": reason, "technician_id": previous_technician},
    )
    notificationService.notify_wo_cancelled(db, wo, previous_technician)
    emit_work_order_cancelled(wo.id, reason, actor_id=actor.id)
    return WorkOrderResult(work_order=wo)


async def reschedule(
    db: AsyncSession,
    work_order_id: int,
    actor: Actor,
    *,
    scheduled_at: datetime,
    estimated_duration_min: Optional[int] = None,
    notes: Optional[str] = None,
) -> WorkOrderResult:
    """Move the scheduled time. Status is left untouched."""
    wo = await get_work_order(db, work_order_id)
    if actor.actor_type == ActorType.CUSTOMER:
        if wo.customer_id != actor.id:
            raise Forbidden(f"Customer '{actor.id}' cannot reschedule work order '{wo.id}'.")
    else:
        _require_actor(actor, *_DISPATCH_ACTORS, action="reschedule work orders")

    if wo.status in RESCHEDULE_LOCKED_STATUSES:
        raise InvalidTransition(
            f"Work order '{wo.id}' cannot be rescheduled in status {wo.status.value}."
        )
    _validate_future(scheduled_at, get_scheduler().now())

    previous = wo.scheduled_at
    wo.scheduled_at = scheduled_at
    if estimated_duration_min is not None:
        wo.estimated_duration_min = estimated_duration_min
    if notes is not None:
        wo.notes = notes
    await db.flush()

    auditService.record(
        db,
        action="WO_RESCHEDULED",
        entity_type="WorkOrder",
        entity_id=wo.id,
        user_id=actor.id,
        metadata={
            "previous": previous.isoformat() if previous else None,
            "scheduled_at": scheduled_at.isoformat(),
        },
    )
    notificationService.notify_wo_rescheduled(db, wo)
    emit_work_order_rescheduled(wo.id, scheduled_at, actor_id=actor.id)
    return WorkOrderResult(work_order=wo, deadline=_active_deadline(wo))


# ---------------------------------------------------------------------------
# Payment verification hand-off
# ---------------------------------------------------------------------------

async def mark_paid_verified(
    db: AsyncSession, wo: WorkOrder, actor: Actor, *, now: datetime,
) -> WorkOrder:
    """COMPLETED_PENDING_PAYMENT -> PAID_VERIFIED, as part of the ledger's transaction."""
    await _transition(
        db,
        wo,
        WorkOrderStatus.PAID_VERIFIED,
        actor,
        paid_verified_at=now,
    )
    _forget_work_order(db, wo.id)
    return wo
