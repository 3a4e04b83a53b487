"""Compensation calculation engine - turns base data plus novedades into a pay breakdown."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from nomina_engine.calculators.disability import (
    DisabilityPolicy,
    disability_pay,
    normalize_origin,
)
from nomina_engine.calculators.ibc import constitutive_adjustments_total, resolve_ibc
from nomina_engine.calculators.legal_parameters import (
    DEFAULT_LEGAL_PARAMETERS,
    LegalParameterSet,
    LegalParameterTable,
)
from nomina_engine.calculators.line_builder import PayLineBuilder
from nomina_engine.calculators.types import (
    DAILY_DIVISOR,
    DEFAULT_SUBTYPES,
    DEFAULT_SURCHARGE_TABLE,
    AdjustmentCategory,
    AdjustmentInput,
    AdjustmentType,
    AdjustmentUnit,
    EmployeeInput,
    LineCandidate,
    PayBreakdown,
    PeriodType,
    SurchargeTable,
)
from nomina_engine.errors import ErrorDetail, InvalidInputError

OVERTIME_WEEKLY_LIMIT_PCT = Decimal("0.25")
HIGH_SALARY_MULTIPLE = Decimal("10")
ZERO = Decimal("0")


@dataclass
class _PricedEarnings:
    lines: list[LineCandidate]
    overtime_pay: Decimal
    bonuses: Decimal


class CompensationCalculator:
    """Pure payroll calculator.

    Calculation pipeline (stable order per employee):
    1) Resolve legal parameters for the period's reference date
    2) Validate inputs (collect every field error, then fail once)
    3) Effective days = worked - disability - absence (floored at 0)
    4) Regular pay, hour-based surcharges, other earnings, disability pay
    5) Transport subsidy (eligibility cap, period fraction, worked-day proration)
    6) IBC and employee deductions (health, pension, solidarity fund, novedades)
    7) Employer contributions on gross minus transport subsidy

    Every line is rounded independently; totals are sums of rounded lines.
    No wall-clock time or I/O is involved, so identical inputs always give
    identical output.
    """

    def __init__(
        self,
        parameters: LegalParameterTable = DEFAULT_LEGAL_PARAMETERS,
        surcharge_table: SurchargeTable | None = None,
        disability_policy: DisabilityPolicy | str = DisabilityPolicy.STANDARD,
        engine_version: str = "1.0.0",
    ):
        self.parameters = parameters
        self.surcharge_table = surcharge_table or DEFAULT_SURCHARGE_TABLE
        self.disability_policy = DisabilityPolicy(disability_policy)
        self.engine_version = engine_version

    def calculate(
        self,
        employee: EmployeeInput,
        period_type: PeriodType | str,
        reference_date: date,
    ) -> PayBreakdown:
        """Calculate the full breakdown for one employee.

        Raises:
            InvalidInputError: With one detail per offending field
        """
        period_type = PeriodType(period_type)
        params = self.parameters.resolve(reference_date)
        self._validate(employee, period_type, params)

        base_salary = Decimal(employee.base_salary)
        worked_days = Decimal(employee.worked_days)
        daily_salary = base_salary / DAILY_DIVISOR
        hourly_divisor = params.hourly_divisor
        hourly_rate = base_salary / Decimal(hourly_divisor)

        disability_days = self._sum_days(employee.adjustments, AdjustmentCategory.DISABILITY)
        absence_days = self._sum_days(employee.adjustments, AdjustmentCategory.ABSENCE)
        effective_days = max(worked_days - disability_days - absence_days, ZERO)

        lines: list[LineCandidate] = []

        regular_line = PayLineBuilder.create_earning_line(
            code="REGULAR",
            amount=daily_salary * effective_days,
            quantity=effective_days,
            rate=daily_salary,
            explanation=f"{effective_days} days at 1/30 of {base_salary}",
        )
        lines.append(regular_line)

        earnings = self._price_earnings(employee.adjustments, daily_salary, hourly_rate, params)
        lines.extend(earnings.lines)

        disability_lines = self._price_disabilities(employee.adjustments, daily_salary, params)
        lines.extend(disability_lines)
        disability_total = sum((line.amount for line in disability_lines), ZERO)

        subsidy = self._transport_subsidy(base_salary, worked_days, period_type, params)
        if subsidy > 0:
            lines.append(
                PayLineBuilder.create_earning_line(
                    code="TRANSPORT_SUBSIDY",
                    amount=subsidy,
                    quantity=worked_days,
                    explanation="Transport subsidy prorated by period and worked days",
                )
            )
            subsidy = lines[-1].amount

        gross = PayLineBuilder.calculate_gross_from_lines(lines)

        # Employee deductions against the IBC; disability days carry their
        # disability pay instead of salary
        constitutive_total = constitutive_adjustments_total(lines)
        ibc = resolve_ibc(base_salary, effective_days, constitutive_total)

        health = PayLineBuilder.create_deduction_line(
            "HEALTH", ibc * params.health_employee_pct, rate=params.health_employee_pct
        )
        pension = PayLineBuilder.create_deduction_line(
            "PENSION", ibc * params.pension_employee_pct, rate=params.pension_employee_pct
        )
        lines.extend([health, pension])

        solidarity_amount = ZERO
        solidarity_rate = params.solidarity_rate(base_salary)
        if solidarity_rate > 0:
            solidarity = PayLineBuilder.create_deduction_line(
                "PENSION_SOLIDARITY_FUND", ibc * solidarity_rate, rate=solidarity_rate
            )
            lines.append(solidarity)
            solidarity_amount = -solidarity.amount

        other_lines = self._price_deductions(employee.adjustments)
        lines.extend(other_lines)
        other_deductions = -sum((line.amount for line in other_lines), ZERO)

        health_amount = -health.amount
        pension_amount = -pension.amount
        total_deductions = health_amount + pension_amount + solidarity_amount + other_deductions
        net = gross - total_deductions

        # Employer contributions on the pre-subsidy base
        employer_base = gross - subsidy
        employer_lines = [
            PayLineBuilder.create_employer_line("EMPLOYER_HEALTH", employer_base, params.health_employer_pct),
            PayLineBuilder.create_employer_line("EMPLOYER_PENSION", employer_base, params.pension_employer_pct),
            PayLineBuilder.create_employer_line("EMPLOYER_RISK_INSURANCE", employer_base, params.risk_insurance_pct),
            PayLineBuilder.create_employer_line(
                "EMPLOYER_COMPENSATION_FUND", employer_base, params.compensation_fund_pct
            ),
            PayLineBuilder.create_employer_line("EMPLOYER_ICBF", employer_base, params.icbf_pct),
            PayLineBuilder.create_employer_line("EMPLOYER_SENA", employer_base, params.sena_pct),
        ]
        lines.extend(employer_lines)
        employer_total = sum((line.amount for line in employer_lines), ZERO)

        inputs_fingerprint = self._compute_inputs_fingerprint(employee, period_type)
        calculation_id = self._generate_calculation_id(
            employee.employee_id,
            period_type,
            reference_date,
            params.effective_date,
            inputs_fingerprint,
        )

        return PayBreakdown(
            employee_id=employee.employee_id,
            period_type=period_type,
            reference_date=reference_date,
            parameters_effective_date=params.effective_date,
            calculation_id=calculation_id,
            inputs_fingerprint=inputs_fingerprint,
            base_salary=base_salary,
            worked_days=worked_days,
            effective_worked_days=effective_days,
            daily_salary=daily_salary,
            hourly_divisor=hourly_divisor,
            hourly_rate=hourly_rate,
            regular_pay=regular_line.amount,
            overtime_pay=earnings.overtime_pay,
            bonuses=earnings.bonuses,
            disability_pay=disability_total,
            transport_subsidy=subsidy,
            gross_pay=gross,
            constitutive_total=constitutive_total,
            ibc=ibc,
            health_deduction=health_amount,
            pension_deduction=pension_amount,
            solidarity_fund=solidarity_amount,
            other_deductions=other_deductions,
            total_deductions=total_deductions,
            net_pay=net,
            employer_health=employer_lines[0].amount,
            employer_pension=employer_lines[1].amount,
            employer_risk_insurance=employer_lines[2].amount,
            employer_compensation_fund=employer_lines[3].amount,
            employer_icbf=employer_lines[4].amount,
            employer_sena=employer_lines[5].amount,
            employer_contributions=employer_total,
            total_payroll_cost=net + employer_total,
            lines=lines,
            warnings=self._collect_warnings(employee, period_type, params),
        )

    # === Validation ===

    def _validate(
        self,
        employee: EmployeeInput,
        period_type: PeriodType,
        params: LegalParameterSet,
    ) -> None:
        details: list[ErrorDetail] = []
        base_salary = Decimal(employee.base_salary)
        worked_days = Decimal(employee.worked_days)

        if base_salary <= 0:
            details.append(
                ErrorDetail("base salary must be positive", field="base_salary", code="non_positive")
            )
        elif base_salary < params.minimum_wage:
            details.append(
                ErrorDetail(
                    f"below minimum wage ({params.minimum_wage})",
                    field="base_salary",
                    code="below_minimum_wage",
                )
            )

        if worked_days < 0 or worked_days > period_type.max_days:
            details.append(
                ErrorDetail(
                    f"worked days must be between 0 and {period_type.max_days} "
                    f"for a {period_type.value} period",
                    field="worked_days",
                    code="out_of_range",
                )
            )

        for i, adjustment in enumerate(employee.adjustments):
            details.extend(self._validate_adjustment(i, adjustment))

        disability_days = self._sum_days(employee.adjustments, AdjustmentCategory.DISABILITY)
        if disability_days > worked_days:
            details.append(
                ErrorDetail(
                    "disability days exceed worked days",
                    field="adjustments.disability",
                    code="exceeds_worked_days",
                )
            )
        absence_days = self._sum_days(employee.adjustments, AdjustmentCategory.ABSENCE)
        if absence_days > worked_days:
            details.append(
                ErrorDetail(
                    "absence days exceed worked days",
                    field="adjustments.absence",
                    code="exceeds_worked_days",
                )
            )

        if details:
            details = [
                ErrorDetail(d.message, d.field, employee.employee_id, d.code) for d in details
            ]
            raise InvalidInputError(details, employee_id=employee.employee_id)

    def _validate_adjustment(self, index: int, adjustment: AdjustmentInput) -> list[ErrorDetail]:
        prefix = f"adjustments[{index}]"
        rule = adjustment.adjustment_type.rule
        errors: list[ErrorDetail] = []

        for name in ("value", "hours", "days"):
            amount = getattr(adjustment, name)
            if amount is not None and amount < 0:
                errors.append(
                    ErrorDetail(f"{name} must not be negative", field=f"{prefix}.{name}", code="negative")
                )

        if rule.unit == AdjustmentUnit.HOURS:
            if adjustment.hours is None:
                errors.append(
                    ErrorDetail("hours are required", field=f"{prefix}.hours", code="required")
                )
            if self._surcharge_key(adjustment) not in self.surcharge_table:
                errors.append(
                    ErrorDetail(
                        f"unknown subtype '{adjustment.subtype}' for {adjustment.adjustment_type.value}",
                        field=f"{prefix}.subtype",
                        code="unknown_subtype",
                    )
                )
        elif rule.unit == AdjustmentUnit.DAYS:
            has_value = rule.accepts_value and adjustment.value is not None
            if adjustment.days is None and not has_value:
                errors.append(
                    ErrorDetail("days are required", field=f"{prefix}.days", code="required")
                )
        elif adjustment.value is None:
            errors.append(
                ErrorDetail("value is required", field=f"{prefix}.value", code="required")
            )

        if rule.category == AdjustmentCategory.DISABILITY:
            try:
                normalize_origin(adjustment.subtype)
            except ValueError as exc:
                errors.append(ErrorDetail(str(exc), field=f"{prefix}.subtype", code="unknown_subtype"))

        return errors

    def _collect_warnings(
        self,
        employee: EmployeeInput,
        period_type: PeriodType,
        params: LegalParameterSet,
    ) -> list[str]:
        warnings: list[str] = []

        overtime_hours = sum(
            (
                Decimal(a.hours)
                for a in employee.adjustments
                if a.adjustment_type == AdjustmentType.OVERTIME and a.hours is not None
            ),
            ZERO,
        )
        weeks = Decimal(period_type.max_days) / 7
        weekly_overtime = overtime_hours / weeks
        limit = Decimal(params.weekly_hours) * OVERTIME_WEEKLY_LIMIT_PCT
        if weekly_overtime > limit:
            warnings.append(
                f"Estimated weekly overtime {weekly_overtime:.1f}h exceeds "
                f"25% of the {params.weekly_hours}h legal week"
            )

        if Decimal(employee.base_salary) >= params.minimum_wage * HIGH_SALARY_MULTIPLE:
            warnings.append("Salary is at least 10 minimum wages: verify contribution caps")

        return warnings

    # === Pricing ===

    def _surcharge_key(self, adjustment: AdjustmentInput) -> tuple[AdjustmentType, str]:
        subtype = adjustment.subtype or DEFAULT_SUBTYPES.get(adjustment.adjustment_type, "")
        return adjustment.adjustment_type, subtype

    def surcharge_factor(self, adjustment: AdjustmentInput, params: LegalParameterSet) -> Decimal:
        """Multiplier for an hour-based adjustment under ``params``."""
        rule = self.surcharge_table[self._surcharge_key(adjustment)]
        factor = rule.base_factor
        if rule.adds_sunday_surcharge:
            factor += params.sunday_holiday_surcharge
        return factor

    def _price_earnings(
        self,
        adjustments: tuple[AdjustmentInput, ...],
        daily_salary: Decimal,
        hourly_rate: Decimal,
        params: LegalParameterSet,
    ) -> _PricedEarnings:
        lines: list[LineCandidate] = []
        overtime_pay = ZERO
        bonuses = ZERO

        for adjustment in adjustments:
            rule = adjustment.adjustment_type.rule
            if rule.category != AdjustmentCategory.EARNING:
                continue

            if rule.unit == AdjustmentUnit.HOURS:
                factor = self.surcharge_factor(adjustment, params)
                hours = Decimal(adjustment.hours)
                _, subtype = self._surcharge_key(adjustment)
                line = PayLineBuilder.create_earning_line(
                    code=f"{adjustment.adjustment_type.name}_{subtype.upper()}",
                    amount=hours * hourly_rate * factor,
                    quantity=hours,
                    rate=factor,
                    source_adjustment_id=adjustment.adjustment_id,
                    explanation=f"{hours}h x hourly rate x {factor}",
                    constitutive=adjustment.is_constitutive,
                )
                overtime_pay += line.amount
            else:
                if adjustment.days is not None and rule.unit == AdjustmentUnit.DAYS:
                    days = Decimal(adjustment.days)
                    amount = daily_salary * days
                    quantity = days
                else:
                    amount = Decimal(adjustment.value)
                    quantity = None
                line = PayLineBuilder.create_earning_line(
                    code=adjustment.adjustment_type.name,
                    amount=amount,
                    quantity=quantity,
                    source_adjustment_id=adjustment.adjustment_id,
                    constitutive=adjustment.is_constitutive,
                )
                bonuses += line.amount
            lines.append(line)

        return _PricedEarnings(lines=lines, overtime_pay=overtime_pay, bonuses=bonuses)

    def _price_disabilities(
        self,
        adjustments: tuple[AdjustmentInput, ...],
        daily_salary: Decimal,
        params: LegalParameterSet,
    ) -> list[LineCandidate]:
        lines = []
        for adjustment in adjustments:
            if adjustment.adjustment_type.rule.category != AdjustmentCategory.DISABILITY:
                continue
            origin = normalize_origin(adjustment.subtype)
            days = Decimal(adjustment.days)
            amount = disability_pay(
                daily_salary, days, origin, self.disability_policy, params.daily_minimum_wage
            )
            lines.append(
                PayLineBuilder.create_earning_line(
                    code=f"DISABILITY_{origin.name}",
                    amount=amount,
                    quantity=days,
                    source_adjustment_id=adjustment.adjustment_id,
                    explanation=f"{days} disability days ({origin.value}, {self.disability_policy.value})",
                    constitutive=adjustment.is_constitutive,
                )
            )
        return lines

    def _price_deductions(self, adjustments: tuple[AdjustmentInput, ...]) -> list[LineCandidate]:
        return [
            PayLineBuilder.create_deduction_line(
                code=a.adjustment_type.name,
                amount=Decimal(a.value),
                source_adjustment_id=a.adjustment_id,
            )
            for a in adjustments
            if a.adjustment_type.rule.category == AdjustmentCategory.DEDUCTION
        ]

    def _transport_subsidy(
        self,
        base_salary: Decimal,
        worked_days: Decimal,
        period_type: PeriodType,
        params: LegalParameterSet,
    ) -> Decimal:
        if not params.is_subsidy_eligible(base_salary):
            return ZERO
        proration = min(worked_days / Decimal(period_type.max_days), Decimal("1"))
        return params.transport_subsidy * period_type.subsidy_fraction * proration

    @staticmethod
    def _sum_days(
        adjustments: tuple[AdjustmentInput, ...], category: AdjustmentCategory
    ) -> Decimal:
        return sum(
            (
                Decimal(a.days)
                for a in adjustments
                if a.adjustment_type.rule.category == category and a.days is not None
            ),
            ZERO,
        )

    # === Fingerprints ===

    def _compute_inputs_fingerprint(self, employee: EmployeeInput, period_type: PeriodType) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        data: dict[str, Any] = {
            "employee_id": str(employee.employee_id),
            "base_salary": str(employee.base_salary),
            "worked_days": str(employee.worked_days),
            "period_type": period_type.value,
            "adjustments": sorted(
                (a.to_fingerprint_dict() for a in employee.adjustments),
                key=lambda d: json.dumps(d, sort_keys=True),
            ),
            "disability_policy": self.disability_policy.value,
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def _generate_calculation_id(
        self,
        employee_id: UUID,
        period_type: PeriodType,
        reference_date: date,
        parameters_effective_date: date,
        inputs_fingerprint: str,
    ) -> UUID:
        """Generate deterministic calculation ID."""
        data = {
            "employee_id": str(employee_id),
            "period_type": period_type.value,
            "reference_date": str(reference_date),
            "parameters_effective_date": str(parameters_effective_date),
            "engine_version": self.engine_version,
            "inputs_fingerprint": inputs_fingerprint,
        }
        json_str = json.dumps(data, sort_keys=True)
        hash_bytes = hashlib.sha256(json_str.encode()).digest()
        return UUID(bytes=hash_bytes[:16])
