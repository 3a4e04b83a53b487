"""Contribution base (IBC) resolution.

This is the only place the IBC formula lives. The compensation calculator,
recalculation previews and the API all go through ``resolve_ibc``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from nomina_engine.calculators.line_builder import PayLineBuilder
from nomina_engine.calculators.types import DAILY_DIVISOR, LineCandidate, LineType

IBC_MAX_DAYS = Decimal("30")


def resolve_ibc(
    base_salary: Decimal,
    worked_days: Decimal,
    constitutive_adjustments_total: Decimal,
) -> Decimal:
    """IBC = round(base / 30 * min(worked_days, 30) + constitutive total)."""
    days = min(Decimal(worked_days), IBC_MAX_DAYS)
    base_portion = Decimal(base_salary) / DAILY_DIVISOR * days
    return PayLineBuilder.round_currency(base_portion + Decimal(constitutive_adjustments_total))


def constitutive_adjustments_total(lines: Iterable[LineCandidate]) -> Decimal:
    """Sum the earning lines that come from constitutive adjustments."""
    return sum(
        (
            line.amount
            for line in lines
            if line.line_type == LineType.EARNING and line.constitutive
        ),
        Decimal("0"),
    )
