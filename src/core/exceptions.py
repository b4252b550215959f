"""
Domain Exceptions
=================

Every failure raised by the dispatch core derives from ``DispatchError`` and
carries a stable ``code`` plus a message naming the precondition that failed.
The families (validation, not found, state conflict, forbidden, resource)
are mapped onto HTTP status codes by ``src.api.errors``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


class DispatchError(Exception):
    """Base class for all dispatch-core errors."""

    code: str = "DISPATCH_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------

class ValidationFailed(DispatchError):
    code = "VALIDATION_FAILED"


class NotFound(DispatchError):
    code = "NOT_FOUND"


class StateConflict(DispatchError):
    code = "STATE_CONFLICT"


class Forbidden(DispatchError):
    code = "FORBIDDEN"


class ResourceError(DispatchError):
    code = "RESOURCE_ERROR"


# ---------------------------------------------------------------------------
# Work orders
# ---------------------------------------------------------------------------

class WorkOrderNotFound(NotFound):
    code = "WORK_ORDER_NOT_FOUND"

    def __init__(self, work_order_id: int) -> None:
        self.work_order_id = work_order_id
        super().__init__(f"Work order with id '{work_order_id}' not found.")


class TechnicianNotFound(ResourceError):
    code = "TECHNICIAN_NOT_FOUND"

    def __init__(self, technician_id: int) -> None:
        self.technician_id = technician_id
        super().__init__(f"Technician with id '{technician_id}' not found.")


class TechnicianBlocked(ResourceError):
    code = "TECHNICIAN_BLOCKED"

    def __init__(self, technician_id: int) -> None:
        self.technician_id = technician_id
        super().__init__(f"Technician '{technician_id}' is blocked and cannot be assigned.")


class InvalidTechnicianRole(ValidationFailed):
    code = "INVALID_TECHNICIAN_ROLE"

    def __init__(self, user_id: int, role: str) -> None:
        self.user_id = user_id
        super().__init__(
            f"User '{user_id}' has role '{role}', expected TECH_INTERNAL or TECH_FREELANCER."
        )


class InvalidTransition(StateConflict):
    code = "INVALID_TRANSITION"


class ConcurrentModification(InvalidTransition):
    """The work order left the expected status before the write landed."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, work_order_id: int, expected: str) -> None:
        self.work_order_id = work_order_id
        self.expected = expected
        super().__init__(
            f"Work order '{work_order_id}' is no longer {expected}; it was changed concurrently."
        )


class NotAssignedToYou(Forbidden):
    code = "NOT_ASSIGNED_TO_YOU"

    def __init__(self, work_order_id: int, technician_id: int | None) -> None:
        super().__init__(
            f"Work order '{work_order_id}' is not assigned to technician '{technician_id}'."
        )


class ResponseWindowExpired(StateConflict):
    code = "RESPONSE_WINDOW_EXPIRED"

    def __init__(self, work_order_id: int) -> None:
        self.work_order_id = work_order_id
        super().__init__(
            f"Response window for work order '{work_order_id}' has expired; "
            "it has been returned to dispatch."
        )


class AlreadyResponded(StateConflict):
    code = "ALREADY_RESPONDED"

    def __init__(self, work_order_id: int, status: str) -> None:
        self.work_order_id = work_order_id
        super().__init__(
            f"Work order '{work_order_id}' is no longer awaiting a response (status {status})."
        )


class InvalidLocation(ValidationFailed):
    code = "INVALID_LOCATION"


class InvalidMaterialsFormat(ValidationFailed):
    code = "INVALID_MATERIALS_FORMAT"


class InvalidSchedule(ValidationFailed):
    code = "INVALID_SCHEDULE"


class InvalidRate(ValidationFailed):
    code = "INVALID_RATE"

    def __init__(self, field: str, rate: Decimal) -> None:
        self.field = field
        super().__init__(f"{field} must be between 0 and 1 (e.g. 0.10 for 10%), got {rate}.")


# ---------------------------------------------------------------------------
# Payments and ledger
# ---------------------------------------------------------------------------

class PaymentNotFound(NotFound):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: int) -> None:
        super().__init__(f"Payment with id '{payment_id}' not found.")


class PaymentAlreadyProcessed(StateConflict):
    code = "PAYMENT_ALREADY_PROCESSED"

    def __init__(self, payment_id: int, status: str) -> None:
        super().__init__(f"Payment '{payment_id}' was already processed (status {status}).")


class InvalidCommissionAmount(ValidationFailed):
    code = "INVALID_COMMISSION_AMOUNT"


class InvalidPayoutAmount(ValidationFailed):
    code = "INVALID_PAYOUT_AMOUNT"


class InsufficientBalance(ResourceError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        *,
        balance: Optional[Decimal] = None,
        reserved: Optional[Decimal] = None,
    ) -> None:
        self.requested = requested
        self.available = available
        self.balance = balance
        self.reserved = reserved
        message = f"insufficient wallet balance: requested {requested:.2f}, available {available:.2f}"
        if balance is not None and reserved is not None:
            message += f" (balance {balance:.2f}, {reserved:.2f} reserved for scheduled payouts)"
        super().__init__(message)


class PayoutNotFound(NotFound):
    code = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: int) -> None:
        super().__init__(f"Payout with id '{payout_id}' not found.")


class PayoutAlreadyProcessed(StateConflict):
    code = "PAYOUT_ALREADY_PROCESSED"

    def __init__(self, payout_id: int) -> None:
        super().__init__(f"Payout '{payout_id}' has already been completed.")


class PayoutRequestNotFound(NotFound):
    code = "PAYOUT_REQUEST_NOT_FOUND"

    def __init__(self, request_id: int) -> None:
        super().__init__(f"Payout request with id '{request_id}' not found.")


class PayoutRequestAlreadyReviewed(StateConflict):
    code = "PAYOUT_REQUEST_ALREADY_REVIEWED"

    def __init__(self, request_id: int, status: str) -> None:
        super().__init__(f"Payout request '{request_id}' was already reviewed (status {status}).")


class NoPendingCommissions(StateConflict):
    code = "NO_PENDING_COMMISSIONS"

    def __init__(self, technician_id: int) -> None:
        super().__init__(f"Technician '{technician_id}' has no unpaid commissions to settle.")


class LedgerInconsistency(StateConflict):
    code = "LEDGER_INCONSISTENCY"
