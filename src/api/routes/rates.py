"""
Rate Management API Routes
==========================

Commission and bonus rates. Reads are open to dispatch and admins (and a
technician may read their own rate); changes are admin only.

Routes:
  GET    /api/v1/rates/summary                                  -- Counts, averages, defaults
  GET    /api/v1/rates/defaults/{employment_type}               -- Current platform default
  PUT    /api/v1/rates/defaults/{employment_type}               -- Set the platform default
  GET    /api/v1/rates/technicians/{technician_id}              -- Own, default and effective rate
  PATCH  /api/v1/rates/technicians/{technician_id}              -- Set an individual rate
  POST   /api/v1/rates/technicians/{technician_id}/reset-to-default
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from src.api.deps import CurrentActor, DBSession, require_back_office, require_self_or_back_office
from src.api.errors import http_error
from src.api.schemas.rate import (
    RateResolutionOut,
    RateSummaryOut,
    SetDefaultRateRequest,
    SetTechnicianRateRequest,
    TechnicianRateOut,
)
from src.core.exceptions import DispatchError, Forbidden
from src.models.user import EmploymentType
from src.services import rateResolver
from src.services.workOrderStateMachine import Actor, ActorType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rates", tags=["Rates"])


def _require_admin(actor: Actor) -> None:
    if actor.actor_type != ActorType.ADMIN:
        raise Forbidden("Only admins can change rates.")


@router.get("/summary", response_model=RateSummaryOut, summary="Rate dashboard summary")
async def get_rate_summary(db: DBSession, actor: CurrentActor) -> RateSummaryOut:
    require_back_office(actor)
    summary = await rateResolver.get_rate_summary(db)
    return RateSummaryOut.model_validate(summary)


@router.get(
    "/defaults/{employment_type}",
    response_model=RateResolutionOut,
    summary="Default rate for an employment type",
)
async def get_default_rate(
    db: DBSession,
    actor: CurrentActor,
    employment_type: EmploymentType,
) -> RateResolutionOut:
    require_back_office(actor)
    resolution = await rateResolver.default_rate_for(db, employment_type)
    return RateResolutionOut.model_validate(resolution)


@router.put(
    "/defaults/{employment_type}",
    response_model=RateResolutionOut,
    summary="Set the default rate for an employment type",
)
async def set_default_rate(
    db: DBSession,
    actor: CurrentActor,
    employment_type: EmploymentType,
    body: SetDefaultRateRequest,
) -> RateResolutionOut:
    try:
        _require_admin(actor)
        resolution = await rateResolver.set_default_rate(db, employment_type, body.rate, actor)
    except DispatchError as exc:
        raise http_error(exc)
    return RateResolutionOut.model_validate(resolution)


@router.get(
    "/technicians/{technician_id}",
    response_model=TechnicianRateOut,
    summary="A technician's rate",
)
async def get_technician_rate(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
) -> TechnicianRateOut:
    require_self_or_back_office(actor, technician_id)
    try:
        view = await rateResolver.get_technician_rate(db, technician_id)
    except DispatchError as exc:
        raise http_error(exc)
    return TechnicianRateOut.model_validate(view)


@router.patch(
    "/technicians/{technician_id}",
    response_model=TechnicianRateOut,
    summary="Set a technician's individual rate",
)
async def set_technician_rate(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
    body: SetTechnicianRateRequest,
) -> TechnicianRateOut:
    try:
        _require_admin(actor)
        view = await rateResolver.set_technician_rate(
            db,
            technician_id,
            actor,
            commission_rate=body.commission_rate,
            bonus_rate=body.bonus_rate,
        )
    except DispatchError as exc:
        raise http_error(exc)
    return TechnicianRateOut.model_validate(view)


@router.post(
    "/technicians/{technician_id}/reset-to-default",
    response_model=TechnicianRateOut,
    summary="Return a technician to the default rate",
)
async def reset_technician_rate(
    db: DBSession,
    actor: CurrentActor,
    technician_id: int,
) -> TechnicianRateOut:
    try:
        _require_admin(actor)
        view = await rateResolver.reset_technician_rate(db, technician_id, actor)
    except DispatchError as exc:
        raise http_error(exc)
    return TechnicianRateOut.model_validate(view)
