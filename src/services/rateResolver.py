"""
Rate Resolver
=============

Three-tier resolution of the commission/bonus rate for a technician:

  1. the technician's own rate, when ``use_custom_rate`` is switched on and
     the rate matching their employment type is set;
  2. the platform default: the default active ``RateStructure`` for the
     (rate type, employment type) pair, else the ``SystemConfig`` field;
  3. the configured fallback (``default_commission_rate`` /
     ``default_bonus_rate``, 0.05 out of the box).

``resolve_rate`` is pure; ``load_rate`` reads the tiers from the store.
Freelancers earn a COMMISSION, internal staff a BONUS.

The management half covers per-technician overrides and the platform
default.  Every change is audited; callers own the transaction.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    InvalidRate,
    InvalidTechnicianRole,
    TechnicianNotFound,
    ValidationFailed,
)
from src.models.rates import RateStructure, RateType, SystemConfig
from src.models.user import EmploymentType, TechnicianProfile, User, UserRole
from src.services import auditService
from src.services.workOrderStateMachine import Actor

logger = logging.getLogger(__name__)

RATE_PRECISION = Decimal("0.0001")


class RateSource(str, enum.Enum):
    CUSTOM = "CUSTOM"
    RATE_STRUCTURE = "RATE_STRUCTURE"
    SYSTEM_CONFIG = "SYSTEM_CONFIG"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class RateResolution:
    rate: Decimal
    rate_type: RateType
    source: RateSource


def rate_type_for(employment_type: EmploymentType) -> RateType:
    if employment_type == EmploymentType.INTERNAL:
        return RateType.BONUS
    return RateType.COMMISSION


def employment_type_for(user: User, profile: Optional[TechnicianProfile]) -> EmploymentType:
    """Profile wins; without one the technician role decides."""
    if profile is not None:
        return profile.employment_type
    if user.role == UserRole.TECH_INTERNAL:
        return EmploymentType.INTERNAL
    return EmploymentType.FREELANCER


def _usable(rate: Optional[Decimal], tier: RateSource) -> bool:
    if rate is None:
        return False
    if not (Decimal(0) <= rate <= Decimal(1)):
        logger.warning("Ignoring %s rate %s outside 0..1", tier.value, rate)
        return False
    return True


def resolve_rate(
    employment_type: EmploymentType,
    *,
    use_custom_rate: bool = False,
    custom_rate: Optional[Decimal] = None,
    structure_rate: Optional[Decimal] = None,
    system_rate: Optional[Decimal] = None,
    fallback_rate: Optional[Decimal] = None,
) -> RateResolution:
    rate_type = rate_type_for(employment_type)

    if use_custom_rate and _usable(custom_rate, RateSource.CUSTOM):
        return RateResolution(custom_rate, rate_type, RateSource.CUSTOM)
    if _usable(structure_rate, RateSource.RATE_STRUCTURE):
        return RateResolution(structure_rate, rate_type, RateSource.RATE_STRUCTURE)
    if _usable(system_rate, RateSource.SYSTEM_CONFIG):
        return RateResolution(system_rate, rate_type, RateSource.SYSTEM_CONFIG)

    if fallback_rate is None:
        fallback_rate = (
            settings.default_bonus_rate
            if rate_type == RateType.BONUS
            else settings.default_commission_rate
        )
    return RateResolution(Decimal(fallback_rate), rate_type, RateSource.FALLBACK)


# ---------------------------------------------------------------------------
# Store-backed resolution
# ---------------------------------------------------------------------------

async def _get_profile(db: AsyncSession, technician_id: int) -> Optional[TechnicianProfile]:
    result = await db.execute(
        select(TechnicianProfile).where(TechnicianProfile.user_id == technician_id)
    )
    return result.scalar_one_or_none()


def _is_default_structure(rate_type: RateType, employment_type: EmploymentType) -> tuple:
    return (
        RateStructure.type == rate_type,
        RateStructure.tech_type == employment_type,
        RateStructure.is_default.is_(True),
        RateStructure.is_active.is_(True),
    )


async def _get_default_structure(
    db: AsyncSession, rate_type: RateType, employment_type: EmploymentType,
) -> Optional[RateStructure]:
    result = await db.execute(
        select(RateStructure)
        .where(*_is_default_structure(rate_type, employment_type))
        .order_by(RateStructure.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_system_config(db: AsyncSession) -> Optional[SystemConfig]:
    result = await db.execute(select(SystemConfig).order_by(SystemConfig.id).limit(1))
    return result.scalar_one_or_none()


def _system_rate(config: Optional[SystemConfig], employment_type: EmploymentType) -> Optional[Decimal]:
    if config is None:
        return None
    if employment_type == EmploymentType.INTERNAL:
        return config.internal_employee_bonus_rate
    return config.freelancer_commission_rate


async def _default_tiers(
    db: AsyncSession, employment_type: EmploymentType,
) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """(rate structure rate, system config rate) for an employment type."""
    rate_type = rate_type_for(employment_type)
    structure_rate = (
        await db.execute(
            select(RateStructure.rate)
            .where(*_is_default_structure(rate_type, employment_type))
            .order_by(RateStructure.id.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    config = await _get_system_config(db)
    return structure_rate, _system_rate(config, employment_type)


async def default_rate_for(db: AsyncSession, employment_type: EmploymentType) -> RateResolution:
    """The rate a technician of this type gets without a custom override."""
    structure_rate, system_rate = await _default_tiers(db, employment_type)
    return resolve_rate(employment_type, structure_rate=structure_rate, system_rate=system_rate)


def _custom_rate(profile: Optional[TechnicianProfile], employment_type: EmploymentType) -> Optional[Decimal]:
    if profile is None:
        return None
    if employment_type == EmploymentType.INTERNAL:
        return profile.bonus_rate
    return profile.commission_rate


async def load_rate(db: AsyncSession, technician: User) -> RateResolution:
    """Resolve the rate for ``technician`` from profile, rate tables and config."""
    profile = await _get_profile(db, technician.id)
    employment_type = employment_type_for(technician, profile)
    structure_rate, system_rate = await _default_tiers(db, employment_type)

    resolution = resolve_rate(
        employment_type,
        use_custom_rate=bool(profile and profile.use_custom_rate),
        custom_rate=_custom_rate(profile, employment_type),
        structure_rate=structure_rate,
        system_rate=system_rate,
    )
    logger.debug(
        "Rate for technician %s: %s (%s, %s)",
        technician.id,
        resolution.rate,
        resolution.rate_type.value,
        resolution.source.value,
    )
    return resolution


# ---------------------------------------------------------------------------
# Rate management
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TechnicianRate:
    technician_id: int
    employment_type: EmploymentType
    use_custom_rate: bool
    commission_rate: Optional[Decimal]
    bonus_rate: Optional[Decimal]
    effective: RateResolution
    default: RateResolution


@dataclass(frozen=True)
class RateTypeSummary:
    rate_type: RateType
    structure_count: int
    average_rate: Decimal


@dataclass(frozen=True)
class RateSummary:
    commission: RateTypeSummary
    bonus: RateTypeSummary
    defaults: dict[EmploymentType, RateResolution]
    custom_rate_technicians: int


def _validate_rate(field: str, rate: Optional[Decimal]) -> Optional[Decimal]:
    if rate is None:
        return None
    rate = Decimal(rate)
    if not (rate.is_finite() and Decimal(0) <= rate <= Decimal(1)):
        raise InvalidRate(field, rate)
    return rate.quantize(RATE_PRECISION)


async def _get_technician(db: AsyncSession, technician_id: int) -> User:
    user = await db.get(User, technician_id)
    if user is None:
        raise TechnicianNotFound(technician_id)
    if not user.is_technician:
        raise InvalidTechnicianRole(technician_id, user.role.value)
    return user


async def _rate_view(db: AsyncSession, technician: User) -> TechnicianRate:
    profile = await _get_profile(db, technician.id)
    employment_type = employment_type_for(technician, profile)
    return TechnicianRate(
        technician_id=technician.id,
        employment_type=employment_type,
        use_custom_rate=bool(profile and profile.use_custom_rate),
        commission_rate=profile.commission_rate if profile else None,
        bonus_rate=profile.bonus_rate if profile else None,
        effective=await load_rate(db, technician),
        default=await default_rate_for(db, employment_type),
    )


async def get_technician_rate(db: AsyncSession, technician_id: int) -> TechnicianRate:
    technician = await _get_technician(db, technician_id)
    return await _rate_view(db, technician)


async def set_technician_rate(
    db: AsyncSession,
    technician_id: int,
    actor: Actor,
    *,
    commission_rate: Optional[Decimal] = None,
    bonus_rate: Optional[Decimal] = None,
) -> TechnicianRate:
    """Store an individual rate and switch the override on.

    Creates the technician's profile when they have none yet.
    """
    if commission_rate is None and bonus_rate is None:
        raise ValidationFailed("Provide commission_rate, bonus_rate or both.")
    commission_rate = _validate_rate("commission_rate", commission_rate)
    bonus_rate = _validate_rate("bonus_rate", bonus_rate)

    technician = await _get_technician(db, technician_id)
    profile = await _get_profile(db, technician_id)
    if profile is None:
        profile = TechnicianProfile(
            user_id=technician_id,
            employment_type=employment_type_for(technician, None),
            use_custom_rate=False,
        )
        db.add(profile)
        await db.flush()

    previous = {
        "commission_rate": _as_str(profile.commission_rate),
        "bonus_rate": _as_str(profile.bonus_rate),
        "use_custom_rate": profile.use_custom_rate,
    }
    if commission_rate is not None:
        profile.commission_rate = commission_rate
    if bonus_rate is not None:
        profile.bonus_rate = bonus_rate
    profile.use_custom_rate = True
    await db.flush()

    auditService.record(
        db,
        action="TECHNICIAN_RATE_UPDATED",
        entity_type="TechnicianProfile",
        entity_id=profile.id,
        user_id=actor.id,
        metadata={
            "technician_id": technician_id,
            "previous": previous,
            "commission_rate": _as_str(commission_rate),
            "bonus_rate": _as_str(bonus_rate),
        },
    )
    logger.info(
        "Custom rate set for technician %s: commission=%s bonus=%s",
        technician_id,
        commission_rate,
        bonus_rate,
    )
    return await _rate_view(db, technician)


async def reset_technician_rate(
    db: AsyncSession, technician_id: int, actor: Actor,
) -> TechnicianRate:
    """Switch the override off so the platform default applies again."""
    technician = await _get_technician(db, technician_id)
    profile = await _get_profile(db, technician_id)
    view = await _rate_view(db, technician)
    if profile is None or not profile.use_custom_rate:
        logger.info("Technician %s already on the default rate", technician_id)
        return view

    previous_rate = view.effective.rate
    profile.use_custom_rate = False
    profile.commission_rate = None
    profile.bonus_rate = None
    await db.flush()

    auditService.record(
        db,
        action="TECHNICIAN_RATE_RESET_TO_DEFAULT",
        entity_type="TechnicianProfile",
        entity_id=profile.id,
        user_id=actor.id,
        metadata={
            "technician_id": technician_id,
            "rate_type": view.default.rate_type.value,
            "previous_rate": str(previous_rate),
            "new_rate": str(view.default.rate),
            "source": view.default.source.value,
        },
    )
    logger.info(
        "Technician %s reset to default rate %s (%s)",
        technician_id,
        view.default.rate,
        view.default.source.value,
    )
    return await _rate_view(db, technician)


async def set_default_rate(
    db: AsyncSession,
    employment_type: EmploymentType,
    rate: Decimal,
    actor: Actor,
) -> RateResolution:
    """Make ``rate`` the platform default for an employment type.

    Writes the default ``RateStructure`` for the pair and mirrors the value
    into ``SystemConfig``, creating either row when missing.
    """
    rate = _validate_rate("rate", rate)
    rate_type = rate_type_for(employment_type)

    structure = await _get_default_structure(db, rate_type, employment_type)
    previous = structure.rate if structure is not None else None
    if structure is None:
        structure = RateStructure(
            name=f"Default {employment_type.value.lower()} {rate_type.value.lower()}",
            type=rate_type,
            tech_type=employment_type,
            rate=rate,
            is_default=True,
            is_active=True,
        )
        db.add(structure)
    else:
        structure.rate = rate
    await db.flush()
    await db.execute(
        update(RateStructure)
        .where(
            *_is_default_structure(rate_type, employment_type),
            RateStructure.id != structure.id,
        )
        .values(is_default=False)
        .execution_options(synchronize_session=False)
    )

    config = await _get_system_config(db)
    if config is None:
        config = SystemConfig()
        db.add(config)
    if employment_type == EmploymentType.INTERNAL:
        config.internal_employee_bonus_rate = rate
    else:
        config.freelancer_commission_rate = rate
    await db.flush()

    auditService.record(
        db,
        action="DEFAULT_RATE_UPDATED",
        entity_type="RateStructure",
        entity_id=structure.id,
        user_id=actor.id,
        metadata={
            "employment_type": employment_type.value,
            "rate_type": rate_type.value,
            "previous_rate": _as_str(previous),
            "new_rate": str(rate),
        },
    )
    logger.info(
        "Default %s rate for %s set to %s (was %s)",
        rate_type.value,
        employment_type.value,
        rate,
        previous,
    )
    return RateResolution(rate, rate_type, RateSource.RATE_STRUCTURE)


async def _summarise_type(db: AsyncSession, rate_type: RateType) -> RateTypeSummary:
    count, average = (
        await db.execute(
            select(func.count(RateStructure.id), func.avg(RateStructure.rate)).where(
                RateStructure.type == rate_type,
                RateStructure.is_active.is_(True),
            )
        )
    ).one()
    average = Decimal(str(average)) if average is not None else Decimal(0)
    return RateTypeSummary(
        rate_type=rate_type,
        structure_count=count,
        average_rate=average.quantize(RATE_PRECISION, rounding=ROUND_HALF_UP),
    )


async def get_rate_summary(db: AsyncSession) -> RateSummary:
    custom = (
        await db.execute(
            select(func.count(TechnicianProfile.id)).where(
                TechnicianProfile.use_custom_rate.is_(True)
            )
        )
    ).scalar_one()
    return RateSummary(
        commission=await _summarise_type(db, RateType.COMMISSION),
        bonus=await _summarise_type(db, RateType.BONUS),
        defaults={
            employment_type: await default_rate_for(db, employment_type)
            for employment_type in EmploymentType
        },
        custom_rate_technicians=custom,
    )


def _as_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None
