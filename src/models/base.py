"""
Declarative base and shared column mixins for all ORM models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, TypeDecorator, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.core.clock import ensure_aware, utcnow


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always loads as an aware UTC datetime."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        value = ensure_aware(value)
        # Stored as UTC; sqlite drops the offset.
        return value.astimezone(timezone.utc) if value is not None else None

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        return ensure_aware(value)


class Base(DeclarativeBase):
    type_annotation_map = {
        datetime: UTCDateTime,
    }


class IntegerPrimaryKeyMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
