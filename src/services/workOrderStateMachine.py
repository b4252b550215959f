"""
Work Order State Machine
========================

Finite state machine governing all valid work-order status transitions.
Every status change MUST go through ``validate_transition`` before being
persisted.

State machine overview::

    UNASSIGNED --> ASSIGNED --> ACCEPTED --> IN_PROGRESS
        --> COMPLETED_PENDING_PAYMENT --> PAID_VERIFIED

    ASSIGNED --> UNASSIGNED           (decline or response timeout)
    ASSIGNED / ACCEPTED --> ASSIGNED  (reassignment)
    ACCEPTED --> COMPLETED_PENDING_PAYMENT  (complete without check-in)
    (non-terminal, not awaiting payment) --> CANCELLED

Guards enforce that only the correct actor type can trigger certain
transitions. Ownership checks (the assigned technician, the customer's own
order) need the work order itself and live in ``workOrderService``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from src.models.user import UserRole
from src.models.work_order import WorkOrderStatus


# ---------------------------------------------------------------------------
# Actor types for guard enforcement
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    CUSTOMER = "customer"
    TECHNICIAN = "technician"
    DISPATCHER = "dispatcher"
    ADMIN = "admin"
    SYSTEM = "system"


_ROLE_TO_ACTOR: dict[UserRole, ActorType] = {
    UserRole.CUSTOMER: ActorType.CUSTOMER,
    UserRole.TECH_INTERNAL: ActorType.TECHNICIAN,
    UserRole.TECH_FREELANCER: ActorType.TECHNICIAN,
    UserRole.DISPATCHER: ActorType.DISPATCHER,
    UserRole.CALL_CENTER: ActorType.DISPATCHER,
    UserRole.ADMIN: ActorType.ADMIN,
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. ``id`` is None for the platform itself."""
    id: Optional[int]
    role: Optional[UserRole]

    @property
    def actor_type(self) -> ActorType:
        if self.role is None:
            return ActorType.SYSTEM
        return _ROLE_TO_ACTOR[self.role]


SYSTEM_ACTOR = Actor(id=None, role=None)


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[WorkOrderStatus, set[WorkOrderStatus]] = {
    WorkOrderStatus.UNASSIGNED: {
        WorkOrderStatus.ASSIGNED,
        WorkOrderStatus.CANCELLED,
    },
    WorkOrderStatus.ASSIGNED: {
        WorkOrderStatus.ACCEPTED,
        WorkOrderStatus.UNASSIGNED,  # decline, timeout, or technician cleared
        WorkOrderStatus.ASSIGNED,  # reassigned to another technician
        WorkOrderStatus.CANCELLED,
    },
    WorkOrderStatus.ACCEPTED: {
        WorkOrderStatus.IN_PROGRESS,
        WorkOrderStatus.COMPLETED_PENDING_PAYMENT,
        WorkOrderStatus.ASSIGNED,
        WorkOrderStatus.UNASSIGNED,
        WorkOrderStatus.CANCELLED,
    },
    WorkOrderStatus.IN_PROGRESS: {
        WorkOrderStatus.COMPLETED_PENDING_PAYMENT,
        WorkOrderStatus.CANCELLED,
    },
    WorkOrderStatus.COMPLETED_PENDING_PAYMENT: {
        WorkOrderStatus.PAID_VERIFIED,
    },
    # Terminal states
    WorkOrderStatus.PAID_VERIFIED: set(),
    WorkOrderStatus.CANCELLED: set(),
}

# Statuses in which a technician must be attached to the work order
TECHNICIAN_BOUND_STATUSES: frozenset[WorkOrderStatus] = frozenset({
    WorkOrderStatus.ASSIGNED,
    WorkOrderStatus.ACCEPTED,
    WorkOrderStatus.IN_PROGRESS,
    WorkOrderStatus.COMPLETED_PENDING_PAYMENT,
    WorkOrderStatus.PAID_VERIFIED,
})

RESCHEDULE_LOCKED_STATUSES: frozenset[WorkOrderStatus] = frozenset({
    WorkOrderStatus.COMPLETED_PENDING_PAYMENT,
    WorkOrderStatus.PAID_VERIFIED,
    WorkOrderStatus.CANCELLED,
})

_DISPATCH_ACTORS = (ActorType.DISPATCHER, ActorType.ADMIN, ActorType.SYSTEM)


def technician_invariant_holds(status: WorkOrderStatus, technician_id: Optional[int]) -> bool:
    """A technician is attached exactly when the status requires one."""
    return (technician_id is not None) == (status in TECHNICIAN_BOUND_STATUSES)


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_assign(actor_type: ActorType) -> TransitionResult:
    if actor_type not in _DISPATCH_ACTORS:
        return TransitionResult(
            allowed=False,
            reason="Only dispatch staff can assign a technician to a work order.",
        )
    return TransitionResult(allowed=True)


def _guard_technician_action(actor_type: ActorType, action: str) -> TransitionResult:
    if actor_type not in (ActorType.TECHNICIAN, ActorType.SYSTEM):
        return TransitionResult(
            allowed=False,
            reason=f"Only the assigned technician can {action} a work order.",
        )
    return TransitionResult(allowed=True)


def _guard_unassign(current: WorkOrderStatus, actor_type: ActorType) -> TransitionResult:
    """Technicians decline from ASSIGNED; dispatch may clear either state."""
    if actor_type == ActorType.TECHNICIAN and current == WorkOrderStatus.ASSIGNED:
        return TransitionResult(allowed=True)
    if actor_type in _DISPATCH_ACTORS:
        return TransitionResult(allowed=True)
    return TransitionResult(
        allowed=False,
        reason=f"Actor '{actor_type.value}' cannot return a {current.value} work order to dispatch.",
    )


def _guard_cancel(actor_type: ActorType) -> TransitionResult:
    if actor_type == ActorType.TECHNICIAN:
        return TransitionResult(
            allowed=False,
            reason="Technicians cannot cancel a work order; decline it instead.",
        )
    return TransitionResult(allowed=True)


def _guard_verify(actor_type: ActorType) -> TransitionResult:
    if actor_type not in _DISPATCH_ACTORS:
        return TransitionResult(
            allowed=False,
            reason="Only dispatch staff can verify a payment.",
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: WorkOrderStatus,
    new_status: WorkOrderStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> TransitionResult:
    """Validate whether a work-order status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Does the actor have permission for this specific transition (guards)?
    """
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
        )

    if new_status == WorkOrderStatus.ASSIGNED:
        return _guard_assign(actor_type)

    if new_status == WorkOrderStatus.ACCEPTED:
        return _guard_technician_action(actor_type, "accept")

    if new_status == WorkOrderStatus.UNASSIGNED:
        return _guard_unassign(current_status, actor_type)

    if new_status == WorkOrderStatus.IN_PROGRESS:
        return _guard_technician_action(actor_type, "start")

    if new_status == WorkOrderStatus.COMPLETED_PENDING_PAYMENT:
        return _guard_technician_action(actor_type, "complete")

    if new_status == WorkOrderStatus.PAID_VERIFIED:
        return _guard_verify(actor_type)

    if new_status == WorkOrderStatus.CANCELLED:
        return _guard_cancel(actor_type)

    return TransitionResult(allowed=True)


def get_valid_transitions(
    current_status: WorkOrderStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[WorkOrderStatus]:
    """Statuses the given actor can move a work order to from ``current_status``."""
    candidates = VALID_TRANSITIONS.get(current_status, set())
    valid: list[WorkOrderStatus] = []
    for target in candidates:
        result = validate_transition(current_status, target, actor_type)
        if result.allowed:
            valid.append(target)
    return sorted(valid, key=lambda s: s.value)
