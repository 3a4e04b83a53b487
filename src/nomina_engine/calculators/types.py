"""Type definitions for the compensation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class PeriodType(str, Enum):
    """Payroll period lengths."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    @property
    def max_days(self) -> int:
        """Maximum worked days a period of this type can hold."""
        return _PERIOD_MAX_DAYS[self]

    @property
    def subsidy_fraction(self) -> Decimal:
        """Share of the monthly transport subsidy paid per period."""
        return _PERIOD_SUBSIDY_FRACTION[self]


_PERIOD_MAX_DAYS = {
    PeriodType.WEEKLY: 7,
    PeriodType.BIWEEKLY: 15,
    PeriodType.MONTHLY: 30,
}

_PERIOD_SUBSIDY_FRACTION = {
    PeriodType.WEEKLY: Decimal("0.25"),
    PeriodType.BIWEEKLY: Decimal("0.5"),
    PeriodType.MONTHLY: Decimal("1"),
}

# Salaries are quoted monthly; every period type prices a day as 1/30 of it.
DAILY_DIVISOR = Decimal("30")


class AdjustmentCategory(str, Enum):
    """How an adjustment affects the breakdown."""

    EARNING = "earning"
    DEDUCTION = "deduction"
    DISABILITY = "disability"
    ABSENCE = "absence"


class AdjustmentUnit(str, Enum):
    """Quantity an adjustment is expressed in."""

    HOURS = "hours"
    DAYS = "days"
    VALUE = "value"


class AdjustmentType(str, Enum):
    """Closed set of novedad types."""

    OVERTIME = "overtime"
    NIGHT_SURCHARGE = "night_surcharge"
    SUNDAY_SURCHARGE = "sunday_surcharge"
    BONUS = "bonus"
    COMMISSION = "commission"
    EXTRALEGAL_BONUS = "extralegal_bonus"
    OTHER_INCOME = "other_income"
    PAID_LEAVE = "paid_leave"
    VACATION = "vacation"
    DISABILITY = "disability"
    ABSENCE = "absence"
    UNPAID_LEAVE = "unpaid_leave"
    LOAN = "loan"
    FINE = "fine"
    VOLUNTARY_DEDUCTION = "voluntary_deduction"
    WITHHOLDING_TAX = "withholding_tax"

    @property
    def rule(self) -> AdjustmentRule:
        return ADJUSTMENT_RULES[self]


@dataclass(frozen=True)
class AdjustmentRule:
    """Static behavior of one adjustment type."""

    category: AdjustmentCategory
    unit: AdjustmentUnit
    constitutive: bool
    # Day-based earnings may alternatively carry an explicit value
    accepts_value: bool = False


ADJUSTMENT_RULES: dict[AdjustmentType, AdjustmentRule] = {
    AdjustmentType.OVERTIME: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.HOURS, True),
    AdjustmentType.NIGHT_SURCHARGE: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.HOURS, True),
    AdjustmentType.SUNDAY_SURCHARGE: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.HOURS, True),
    AdjustmentType.BONUS: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.VALUE, False),
    AdjustmentType.COMMISSION: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.VALUE, True),
    AdjustmentType.EXTRALEGAL_BONUS: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.VALUE, True),
    AdjustmentType.OTHER_INCOME: AdjustmentRule(AdjustmentCategory.EARNING, AdjustmentUnit.VALUE, False),
    AdjustmentType.PAID_LEAVE: AdjustmentRule(
        AdjustmentCategory.EARNING, AdjustmentUnit.DAYS, True, accepts_value=True
    ),
    AdjustmentType.VACATION: AdjustmentRule(
        AdjustmentCategory.EARNING, AdjustmentUnit.DAYS, False, accepts_value=True
    ),
    AdjustmentType.DISABILITY: AdjustmentRule(AdjustmentCategory.DISABILITY, AdjustmentUnit.DAYS, True),
    AdjustmentType.ABSENCE: AdjustmentRule(AdjustmentCategory.ABSENCE, AdjustmentUnit.DAYS, False),
    AdjustmentType.UNPAID_LEAVE: AdjustmentRule(AdjustmentCategory.ABSENCE, AdjustmentUnit.DAYS, False),
    AdjustmentType.LOAN: AdjustmentRule(AdjustmentCategory.DEDUCTION, AdjustmentUnit.VALUE, False),
    AdjustmentType.FINE: AdjustmentRule(AdjustmentCategory.DEDUCTION, AdjustmentUnit.VALUE, False),
    AdjustmentType.VOLUNTARY_DEDUCTION: AdjustmentRule(
        AdjustmentCategory.DEDUCTION, AdjustmentUnit.VALUE, False
    ),
    AdjustmentType.WITHHOLDING_TAX: AdjustmentRule(AdjustmentCategory.DEDUCTION, AdjustmentUnit.VALUE, False),
}


@dataclass(frozen=True)
class SurchargeRule:
    """Multiplier applied to the hourly rate for an hour-based adjustment.

    ``adds_sunday_surcharge`` adds the Sunday/holiday surcharge in force on
    the reference date, which changes over time.
    """

    base_factor: Decimal
    adds_sunday_surcharge: bool = False


SurchargeTable = dict[tuple[AdjustmentType, str], SurchargeRule]

DEFAULT_SURCHARGE_TABLE: SurchargeTable = {
    (AdjustmentType.OVERTIME, "daytime"): SurchargeRule(Decimal("1.25")),
    (AdjustmentType.OVERTIME, "night"): SurchargeRule(Decimal("1.75")),
    (AdjustmentType.OVERTIME, "holiday_daytime"): SurchargeRule(Decimal("2.00")),
    (AdjustmentType.OVERTIME, "holiday_night"): SurchargeRule(Decimal("2.50")),
    (AdjustmentType.NIGHT_SURCHARGE, "night"): SurchargeRule(Decimal("0.35")),
    (AdjustmentType.NIGHT_SURCHARGE, "holiday_night"): SurchargeRule(Decimal("0.35"), True),
    (AdjustmentType.SUNDAY_SURCHARGE, "holiday"): SurchargeRule(Decimal("0"), True),
}

DEFAULT_SUBTYPES: dict[AdjustmentType, str] = {
    AdjustmentType.OVERTIME: "daytime",
    AdjustmentType.NIGHT_SURCHARGE: "night",
    AdjustmentType.SUNDAY_SURCHARGE: "holiday",
}


class LineType(str, Enum):
    """Pay line item types."""

    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"


@dataclass
class LineCandidate:
    """A single pay slip line before persistence."""

    line_type: LineType
    code: str
    amount: Decimal  # Final amount (signed per conventions)

    # Quantity/rate (hours, days, or percentage base)
    quantity: Decimal | None = None
    rate: Decimal | None = None

    # Traceability
    source_adjustment_id: UUID | None = None
    explanation: str | None = None
    constitutive: bool = False

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return the line as a JSON-safe dict."""
        return {
            "line_type": self.line_type.value,
            "code": self.code,
            "source_adjustment_id": (
                str(self.source_adjustment_id) if self.source_adjustment_id else None
            ),
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "rate": str(self.rate) if self.rate is not None else None,
            "amount": str(self.amount),
            "constitutive": self.constitutive,
        }


@dataclass(frozen=True)
class AdjustmentInput:
    """One novedad as seen by the calculator."""

    adjustment_type: AdjustmentType
    value: Decimal | None = None
    hours: Decimal | None = None
    days: Decimal | None = None
    subtype: str | None = None
    constitutive: bool | None = None  # None = type default
    adjustment_id: UUID | None = None

    @property
    def is_constitutive(self) -> bool:
        if self.constitutive is not None:
            return self.constitutive
        return self.adjustment_type.rule.constitutive

    def to_fingerprint_dict(self) -> dict[str, Any]:
        return {
            "type": self.adjustment_type.value,
            "value": str(self.value) if self.value is not None else None,
            "hours": str(self.hours) if self.hours is not None else None,
            "days": str(self.days) if self.days is not None else None,
            "subtype": self.subtype,
            "constitutive": self.is_constitutive,
            "adjustment_id": str(self.adjustment_id) if self.adjustment_id else None,
        }


@dataclass(frozen=True)
class EmployeeInput:
    """Everything the calculator needs about one employee for one period."""

    employee_id: UUID
    base_salary: Decimal
    worked_days: Decimal
    adjustments: tuple[AdjustmentInput, ...] = ()


@dataclass
class PayBreakdown:
    """Full pay breakdown for one employee and one period."""

    employee_id: UUID
    period_type: PeriodType
    reference_date: date
    parameters_effective_date: date
    calculation_id: UUID
    inputs_fingerprint: str

    base_salary: Decimal
    worked_days: Decimal
    effective_worked_days: Decimal
    daily_salary: Decimal
    hourly_divisor: int
    hourly_rate: Decimal

    regular_pay: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    disability_pay: Decimal
    transport_subsidy: Decimal
    gross_pay: Decimal

    constitutive_total: Decimal
    ibc: Decimal
    health_deduction: Decimal
    pension_deduction: Decimal
    solidarity_fund: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    employer_health: Decimal
    employer_pension: Decimal
    employer_risk_insurance: Decimal
    employer_compensation_fund: Decimal
    employer_icbf: Decimal
    employer_sena: Decimal
    employer_contributions: Decimal
    total_payroll_cost: Decimal

    lines: list[LineCandidate] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    _MONEY_FIELDS = (
        "regular_pay",
        "overtime_pay",
        "bonuses",
        "disability_pay",
        "transport_subsidy",
        "gross_pay",
        "constitutive_total",
        "ibc",
        "health_deduction",
        "pension_deduction",
        "solidarity_fund",
        "other_deductions",
        "total_deductions",
        "net_pay",
        "employer_health",
        "employer_pension",
        "employer_risk_insurance",
        "employer_compensation_fund",
        "employer_icbf",
        "employer_sena",
        "employer_contributions",
        "total_payroll_cost",
    )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation used for persistence and previews."""
        data: dict[str, Any] = {
            "employee_id": str(self.employee_id),
            "period_type": self.period_type.value,
            "reference_date": self.reference_date.isoformat(),
            "parameters_effective_date": self.parameters_effective_date.isoformat(),
            "calculation_id": str(self.calculation_id),
            "inputs_fingerprint": self.inputs_fingerprint,
            "base_salary": str(self.base_salary),
            "worked_days": str(self.worked_days),
            "effective_worked_days": str(self.effective_worked_days),
            "daily_salary": str(self.daily_salary),
            "hourly_divisor": self.hourly_divisor,
            "hourly_rate": str(self.hourly_rate),
            "lines": [line.to_canonical_dict() for line in self.lines],
            "warnings": list(self.warnings),
        }
        for name in self._MONEY_FIELDS:
            data[name] = str(getattr(self, name))
        return data
