"""
SQLAlchemy models for users and technician compensation profiles.
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    DISPATCHER = "DISPATCHER"
    CALL_CENTER = "CALL_CENTER"
    CUSTOMER = "CUSTOMER"
    TECH_INTERNAL = "TECH_INTERNAL"
    TECH_FREELANCER = "TECH_FREELANCER"


TECHNICIAN_ROLES: frozenset[UserRole] = frozenset({
    UserRole.TECH_INTERNAL,
    UserRole.TECH_FREELANCER,
})


class LocationStatus(str, enum.Enum):
    ONLINE = "ONLINE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class EmploymentType(str, enum.Enum):
    FREELANCER = "FREELANCER"
    INTERNAL = "INTERNAL"


class User(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", native_enum=False, length=32),
        nullable=False,
    )
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location_status: Mapped[LocationStatus] = mapped_column(
        Enum(LocationStatus, name="location_status", native_enum=False, length=16),
        nullable=False,
        default=LocationStatus.OFFLINE,
    )

    technician_profile: Mapped[Optional["TechnicianProfile"]] = relationship(
        back_populates="user",
        uselist=False,
        lazy="raise",
    )

    @property
    def is_technician(self) -> bool:
        return self.role in TECHNICIAN_ROLES

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role.value}>"


class TechnicianProfile(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Compensation settings for one technician.

    ``commission_rate`` applies to freelancers and ``bonus_rate`` to internal
    staff; either is only used when ``use_custom_rate`` is switched on.
    """

    __tablename__ = "technician_profiles"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    employment_type: Mapped[EmploymentType] = mapped_column(
        Enum(EmploymentType, name="employment_type", native_enum=False, length=16),
        nullable=False,
    )
    use_custom_rate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)
    bonus_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 4), nullable=True)

    user: Mapped["User"] = relationship(back_populates="technician_profile", lazy="raise")

    def __repr__(self) -> str:
        return f"<TechnicianProfile user_id={self.user_id} type={self.employment_type.value}>"
