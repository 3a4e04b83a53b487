"""Social benefit accruals (prestaciones sociales)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from nomina_engine.calculators.legal_parameters import (
    DEFAULT_LEGAL_PARAMETERS,
    LegalParameterTable,
)
from nomina_engine.calculators.line_builder import PayLineBuilder
from nomina_engine.errors import (
    ErrorDetail,
    InvalidInputError,
    MissingDependencyError,
    UnsupportedPeriodicityError,
)

ANNUAL_INTEREST_RATE = Decimal("0.12")


class BenefitType(str, Enum):
    SEVERANCE = "severance"
    SEVERANCE_INTEREST = "severance_interest"
    SERVICE_BONUS = "service_bonus"
    VACATION = "vacation"


class Periodicity(str, Enum):
    """Accrual range shapes the interest formula recognizes."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @property
    def interest_rate(self) -> Decimal:
        return _INTEREST_RATES[self]


_INTEREST_RATES = {
    Periodicity.MONTHLY: ANNUAL_INTEREST_RATE / 12,
    Periodicity.BIWEEKLY: ANNUAL_INTEREST_RATE / 24,
    Periodicity.WEEKLY: ANNUAL_INTEREST_RATE / 52,
}


def inclusive_days(period_start: date, period_end: date) -> int:
    return (period_end - period_start).days + 1


def infer_periodicity(day_count: int) -> Periodicity:
    """Infer periodicity from an inclusive day count.

    7 days is weekly, 13-16 biweekly (covers 16-28 Feb), 28-31 monthly.
    """
    if day_count == 7:
        return Periodicity.WEEKLY
    if 13 <= day_count <= 16:
        return Periodicity.BIWEEKLY
    if 28 <= day_count <= 31:
        return Periodicity.MONTHLY
    raise UnsupportedPeriodicityError(day_count)


@dataclass(frozen=True)
class BenefitAccrual:
    """Accrued amount plus the basis used to compute it."""

    benefit_type: BenefitType
    amount: Decimal
    monthly_salary: Decimal
    monthly_subsidy: Decimal
    day_count: int
    rate: Decimal | None = None
    periodicity: Periodicity | None = None

    def basis(self) -> dict[str, Any]:
        return {
            "monthly_salary": str(self.monthly_salary),
            "monthly_subsidy": str(self.monthly_subsidy),
            "day_count": self.day_count,
            "rate": str(self.rate) if self.rate is not None else None,
            "periodicity": self.periodicity.value if self.periodicity else None,
        }


class SocialBenefitCalculator:
    """Computes accruals from full monthly amounts, never period-prorated ones."""

    def __init__(self, parameters: LegalParameterTable = DEFAULT_LEGAL_PARAMETERS):
        self.parameters = parameters

    def calculate(
        self,
        benefit_type: BenefitType | str,
        base_salary: Decimal,
        transport_subsidy: Decimal | None,
        period_start: date,
        period_end: date,
        reference_date: date,
        severance_amount: Decimal | None = None,
    ) -> BenefitAccrual:
        """Accrue one benefit for an inclusive date range.

        ``transport_subsidy`` is the full monthly subsidy; pass None to derive
        it from the parameters in force (0 above the eligibility cap).
        ``severance_amount`` is the stored severance for the same range and is
        required for severance interest.
        """
        benefit_type = BenefitType(benefit_type)
        base_salary = Decimal(base_salary)
        self._validate(base_salary, period_start, period_end)

        params = self.parameters.resolve(reference_date)
        if transport_subsidy is None:
            monthly_subsidy = (
                params.transport_subsidy if params.is_subsidy_eligible(base_salary) else Decimal("0")
            )
        else:
            monthly_subsidy = Decimal(transport_subsidy)

        days = inclusive_days(period_start, period_end)
        constitutive_base = base_salary + monthly_subsidy

        if benefit_type in (BenefitType.SEVERANCE, BenefitType.SERVICE_BONUS):
            amount = constitutive_base * days / 360
            return self._accrual(benefit_type, amount, base_salary, monthly_subsidy, days)

        if benefit_type == BenefitType.VACATION:
            amount = base_salary * days / 720
            return self._accrual(benefit_type, amount, base_salary, monthly_subsidy, days)

        if severance_amount is None:
            raise MissingDependencyError(
                f"Severance interest needs a stored severance for {period_start} - {period_end}",
                [
                    ErrorDetail(
                        "severance not calculated for this range",
                        field="severance_amount",
                        code="missing_severance",
                    )
                ],
            )
        periodicity = infer_periodicity(days)
        rate = periodicity.interest_rate
        return self._accrual(
            benefit_type,
            Decimal(severance_amount) * rate,
            base_salary,
            monthly_subsidy,
            days,
            rate=rate,
            periodicity=periodicity,
        )

    @staticmethod
    def _validate(base_salary: Decimal, period_start: date, period_end: date) -> None:
        details = []
        if base_salary <= 0:
            details.append(
                ErrorDetail("base salary must be positive", field="base_salary", code="non_positive")
            )
        if period_end < period_start:
            details.append(
                ErrorDetail("period end precedes period start", field="period_end", code="invalid_range")
            )
        if details:
            raise InvalidInputError(details)

    @staticmethod
    def _accrual(
        benefit_type: BenefitType,
        amount: Decimal,
        monthly_salary: Decimal,
        monthly_subsidy: Decimal,
        days: int,
        rate: Decimal | None = None,
        periodicity: Periodicity | None = None,
    ) -> BenefitAccrual:
        return BenefitAccrual(
            benefit_type=benefit_type,
            amount=PayLineBuilder.round_currency(amount),
            monthly_salary=monthly_salary,
            monthly_subsidy=monthly_subsidy,
            day_count=days,
            rate=rate,
            periodicity=periodicity,
        )
