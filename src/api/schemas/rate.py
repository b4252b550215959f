"""Pydantic v2 schemas for rate management."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.models.rates import RateType
from src.models.user import EmploymentType
from src.services.rateResolver import RateSource


class SetTechnicianRateRequest(BaseModel):
    """Rates as fractions, e.g. 0.10 for 10%."""

    commission_rate: Optional[Decimal] = None
    bonus_rate: Optional[Decimal] = None


class SetDefaultRateRequest(BaseModel):
    rate: Decimal


class RateResolutionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rate: Decimal
    rate_type: RateType
    source: RateSource


class TechnicianRateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    technician_id: int
    employment_type: EmploymentType
    use_custom_rate: bool
    commission_rate: Optional[Decimal] = None
    bonus_rate: Optional[Decimal] = None
    effective: RateResolutionOut
    default: RateResolutionOut


class RateTypeSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rate_type: RateType
    structure_count: int
    average_rate: Decimal


class RateSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commission: RateTypeSummaryOut
    bonus: RateTypeSummaryOut
    defaults: dict[EmploymentType, RateResolutionOut]
    custom_rate_technicians: int
