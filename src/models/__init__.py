"""
Dispatch SQLAlchemy Models
==========================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from src.models import Base, User, WorkOrder, Wallet
"""

# -- Base & Mixins --
from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin, UTCDateTime

# -- Users & technicians --
from .user import (
    TECHNICIAN_ROLES,
    EmploymentType,
    LocationStatus,
    TechnicianProfile,
    User,
    UserRole,
)

# -- Rates --
from .rates import RateStructure, RateType, SystemConfig

# -- Work orders --
from .work_order import TechnicianCheckin, WorkOrder, WorkOrderStatus

# -- Payments --
from .payment import Payment, PaymentMethod, PaymentStatus

# -- Ledger --
from .ledger import (
    Commission,
    CommissionStatus,
    CommissionType,
    Payout,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutStatus,
    PayoutType,
    TransactionSource,
    TransactionType,
    Wallet,
    WalletTransaction,
)

# -- Audit & notifications --
from .audit import AuditLog
from .notification import Notification, NotificationType

__all__ = [
    # Base
    "Base",
    "IntegerPrimaryKeyMixin",
    "TimestampMixin",
    "UTCDateTime",
    # Users
    "User",
    "UserRole",
    "LocationStatus",
    "EmploymentType",
    "TechnicianProfile",
    "TECHNICIAN_ROLES",
    # Rates
    "RateStructure",
    "RateType",
    "SystemConfig",
    # Work orders
    "WorkOrder",
    "WorkOrderStatus",
    "TechnicianCheckin",
    # Payments
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    # Ledger
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "TransactionSource",
    "Commission",
    "CommissionType",
    "CommissionStatus",
    "Payout",
    "PayoutType",
    "PayoutStatus",
    "PayoutRequest",
    "PayoutRequestStatus",
    # Audit & notifications
    "AuditLog",
    "Notification",
    "NotificationType",
]
