"""Effective-dated statutory parameters.

A ``LegalParameterTable`` is an ordered list of immutable parameter sets.
Calculators receive a table instead of reading module globals, so tests can
inject arbitrary sets and historical periods always resolve the same basis.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Iterator


@dataclass(frozen=True)
class SolidarityBracket:
    """Pension solidarity-fund bracket, in multiples of the minimum wage."""

    min_wages: Decimal
    rate: Decimal


DEFAULT_SOLIDARITY_BRACKETS: tuple[SolidarityBracket, ...] = (
    SolidarityBracket(Decimal("4"), Decimal("0.01")),
    SolidarityBracket(Decimal("16"), Decimal("0.012")),
    SolidarityBracket(Decimal("17"), Decimal("0.014")),
    SolidarityBracket(Decimal("18"), Decimal("0.016")),
    SolidarityBracket(Decimal("19"), Decimal("0.018")),
    SolidarityBracket(Decimal("20"), Decimal("0.02")),
)


@dataclass(frozen=True)
class LegalParameterSet:
    """Statutory values in force from ``effective_date`` onward."""

    effective_date: date
    minimum_wage: Decimal
    transport_subsidy: Decimal
    weekly_hours: int
    sunday_holiday_surcharge: Decimal
    transport_cap_multiple: Decimal = Decimal("2")

    # Employee shares
    health_employee_pct: Decimal = Decimal("0.04")
    pension_employee_pct: Decimal = Decimal("0.04")

    # Employer shares
    health_employer_pct: Decimal = Decimal("0.085")
    pension_employer_pct: Decimal = Decimal("0.12")
    risk_insurance_pct: Decimal = Decimal("0.00522")
    compensation_fund_pct: Decimal = Decimal("0.04")
    icbf_pct: Decimal = Decimal("0.03")
    sena_pct: Decimal = Decimal("0.02")

    solidarity_brackets: tuple[SolidarityBracket, ...] = field(
        default=DEFAULT_SOLIDARITY_BRACKETS
    )

    @property
    def hourly_divisor(self) -> int:
        """Monthly hours: round(weekly_hours * 52 / 12), half-up."""
        monthly = Decimal(self.weekly_hours) * 52 / 12
        return int(monthly.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def transport_cap(self) -> Decimal:
        """Highest monthly salary still eligible for the transport subsidy."""
        return self.minimum_wage * self.transport_cap_multiple

    @property
    def daily_minimum_wage(self) -> Decimal:
        return self.minimum_wage / 30

    def is_subsidy_eligible(self, base_salary: Decimal) -> bool:
        return base_salary <= self.transport_cap

    def solidarity_rate(self, monthly_salary: Decimal) -> Decimal:
        """Solidarity-fund rate for a monthly salary (0 below the first bracket)."""
        wages = monthly_salary / self.minimum_wage
        rate = Decimal("0")
        for bracket in self.solidarity_brackets:
            if wages >= bracket.min_wages:
                rate = bracket.rate
        return rate


class LegalParameterTable:
    """Ordered, immutable collection of parameter sets.

    Selection rule: the set with the latest effective date that is <= the
    reference date; dates before every set fall back to the earliest one.
    """

    def __init__(self, parameter_sets: Iterable[LegalParameterSet]):
        ordered = sorted(parameter_sets, key=lambda p: p.effective_date)
        if not ordered:
            raise ValueError("A legal parameter table needs at least one set")
        dates = [p.effective_date for p in ordered]
        if len(set(dates)) != len(dates):
            raise ValueError("Legal parameter sets must have distinct effective dates")
        self._sets: tuple[LegalParameterSet, ...] = tuple(ordered)
        self._dates: tuple[date, ...] = tuple(dates)

    @property
    def fallback(self) -> LegalParameterSet:
        """Set used for dates before any known effective date."""
        return self._sets[0]

    def resolve(self, reference_date: date) -> LegalParameterSet:
        """Return the parameter set in force on ``reference_date``."""
        index = bisect_right(self._dates, reference_date)
        if index == 0:
            return self.fallback
        return self._sets[index - 1]

    def __iter__(self) -> Iterator[LegalParameterSet]:
        return iter(self._sets)

    def __len__(self) -> int:
        return len(self._sets)


_BASE_2023 = LegalParameterSet(
    effective_date=date(2023, 1, 1),
    minimum_wage=Decimal("1160000"),
    transport_subsidy=Decimal("140606"),
    weekly_hours=48,
    sunday_holiday_surcharge=Decimal("0.75"),
)

_BASE_2024 = replace(
    _BASE_2023,
    effective_date=date(2024, 1, 1),
    minimum_wage=Decimal("1300000"),
    transport_subsidy=Decimal("162000"),
    weekly_hours=47,
)

_BASE_2025 = replace(
    _BASE_2024,
    effective_date=date(2025, 1, 1),
    minimum_wage=Decimal("1423500"),
    transport_subsidy=Decimal("200000"),
    weekly_hours=46,
)

# Colombia: minimum wage decrees plus the staged workweek reduction and
# Sunday surcharge increase.
DEFAULT_LEGAL_PARAMETERS = LegalParameterTable(
    [
        _BASE_2023,
        replace(_BASE_2023, effective_date=date(2023, 7, 15), weekly_hours=47),
        _BASE_2024,
        replace(_BASE_2024, effective_date=date(2024, 7, 15), weekly_hours=46),
        _BASE_2025,
        replace(
            _BASE_2025,
            effective_date=date(2025, 7, 1),
            sunday_holiday_surcharge=Decimal("0.80"),
        ),
        replace(
            _BASE_2025,
            effective_date=date(2025, 7, 15),
            weekly_hours=44,
            sunday_holiday_surcharge=Decimal("0.80"),
        ),
    ]
)
