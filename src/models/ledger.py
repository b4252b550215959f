"""
SQLAlchemy models for the compensation ledger: wallets, append-only wallet
transactions, commissions, payouts and early-payout requests.
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, Enum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IntegerPrimaryKeyMixin, TimestampMixin, UTCDateTime


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransactionType(str, enum.Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionSource(str, enum.Enum):
    COMMISSION = "COMMISSION"
    BONUS = "BONUS"
    PAYOUT = "PAYOUT"
    MANUAL = "MANUAL"


class CommissionType(str, enum.Enum):
    COMMISSION = "COMMISSION"
    BONUS = "BONUS"


class CommissionStatus(str, enum.Enum):
    EARNED = "EARNED"
    PENDING_PAYOUT = "PENDING_PAYOUT"
    PAID = "PAID"


class PayoutType(str, enum.Enum):
    WEEKLY = "WEEKLY"
    EARLY = "EARLY"
    ON_DEMAND = "ON_DEMAND"


class PayoutStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"


class PayoutRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

class Wallet(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Running balance of a technician's unpaid earnings.

    ``balance`` is only ever changed by ``compensationLedger`` together with
    the ``WalletTransaction`` row that explains the change.
    """

    __tablename__ = "wallets"

    technician_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False,
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00"),
    )

    def __repr__(self) -> str:
        return f"<Wallet technician_id={self.technician_id} balance={self.balance}>"


class WalletTransaction(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Append-only ledger line. ``amount`` is always a positive magnitude."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_transactions_wallet_id", "wallet_id"),
    )

    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="transaction_type", native_enum=False, length=8),
        nullable=False,
    )
    source_type: Mapped[TransactionSource] = mapped_column(
        Enum(TransactionSource, name="transaction_source", native_enum=False, length=16),
        nullable=False,
    )
    source_id: Mapped[Optional[int]] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount


# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------

class Commission(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    """Earning for one verified work order. ``wo_id`` is unique."""

    __tablename__ = "commissions"
    __table_args__ = (
        Index("ix_commissions_technician_status", "technician_id", "status"),
    )

    wo_id: Mapped[int] = mapped_column(
        ForeignKey("work_orders.id"), unique=True, nullable=False,
    )
    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[CommissionType] = mapped_column(
        Enum(CommissionType, name="commission_type", native_enum=False, length=16),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        Enum(CommissionStatus, name="commission_status", native_enum=False, length=16),
        nullable=False,
        default=CommissionStatus.EARNED,
    )
    payment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payments.id"), nullable=True)
    payout_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payouts.id"), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    payout: Mapped[Optional["Payout"]] = relationship(back_populates="commissions", lazy="raise")


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

class Payout(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payouts"

    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    type: Mapped[PayoutType] = mapped_column(
        Enum(PayoutType, name="payout_type", native_enum=False, length=16),
        nullable=False,
    )
    status: Mapped[PayoutStatus] = mapped_column(
        Enum(PayoutStatus, name="payout_status", native_enum=False, length=16),
        nullable=False,
        default=PayoutStatus.SCHEDULED,
    )
    scheduled_for: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    processed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    commissions: Mapped[list["Commission"]] = relationship(
        back_populates="payout",
        lazy="raise",
        order_by="Commission.id",
    )


class PayoutRequest(IntegerPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payout_requests"

    technician_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PayoutRequestStatus] = mapped_column(
        Enum(PayoutRequestStatus, name="payout_request_status", native_enum=False, length=16),
        nullable=False,
        default=PayoutRequestStatus.PENDING,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reviewed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payout_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payouts.id"), nullable=True)
