"""
Rate tables: per-type default rate structures and the singleton system config.
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin
from .user import EmploymentType


class RateType(str, enum.Enum):
    COMMISSION = "COMMISSION"
    BONUS = "BONUS"


class RateStructure(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "rate_structures"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[RateType] = mapped_column(
        Enum(RateType, name="rate_type", native_enum=False, length=16),
        nullable=False,
    )
    tech_type: Mapped[EmploymentType] = mapped_column(
        Enum(EmploymentType, name="employment_type", native_enum=False, length=16),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SystemConfig(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Single-row table of platform-wide defaults."""

    __tablename__ = "system_config"

    freelancer_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 4), nullable=True,
    )
    internal_employee_bonus_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 4), nullable=True,
    )
