"""Disability (incapacidad) pay policies."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


class DisabilityPolicy(str, Enum):
    """How a company pays general-origin disability days."""

    STANDARD = "standard_2d_100_rest_66"
    FROM_DAY_ONE = "from_day1_66_with_floor"


class DisabilityOrigin(str, Enum):
    GENERAL = "general"
    WORK_RELATED = "work_related"


_ORIGIN_ALIASES = {
    "general": DisabilityOrigin.GENERAL,
    "common": DisabilityOrigin.GENERAL,
    "comun": DisabilityOrigin.GENERAL,
    "enfermedad_general": DisabilityOrigin.GENERAL,
    "work_related": DisabilityOrigin.WORK_RELATED,
    "laboral": DisabilityOrigin.WORK_RELATED,
    "arl": DisabilityOrigin.WORK_RELATED,
    "accidente_laboral": DisabilityOrigin.WORK_RELATED,
    "at": DisabilityOrigin.WORK_RELATED,
}

FULL_PAY_DAYS = Decimal("2")
REDUCED_PAY_PCT = Decimal("0.6667")


def normalize_origin(subtype: str | None) -> DisabilityOrigin:
    """Map a free-form subtype to an origin; missing means general.

    Raises ValueError for unknown subtypes.
    """
    if subtype is None or not subtype.strip():
        return DisabilityOrigin.GENERAL
    key = subtype.strip().lower()
    if key not in _ORIGIN_ALIASES:
        raise ValueError(f"Unknown disability subtype '{subtype}'")
    return _ORIGIN_ALIASES[key]


def disability_pay(
    daily_salary: Decimal,
    days: Decimal,
    origin: DisabilityOrigin,
    policy: DisabilityPolicy,
    daily_minimum_wage: Decimal,
) -> Decimal:
    """Unrounded pay for ``days`` of disability.

    Reduced days are paid at 66.67% of the daily salary but never below the
    daily minimum wage.
    """
    if days <= 0:
        return Decimal("0")

    if origin == DisabilityOrigin.WORK_RELATED:
        return daily_salary * days

    reduced_rate = max(daily_salary * REDUCED_PAY_PCT, daily_minimum_wage)

    if policy == DisabilityPolicy.FROM_DAY_ONE:
        return reduced_rate * days

    full_days = min(days, FULL_PAY_DAYS)
    return daily_salary * full_days + reduced_rate * (days - full_days)
