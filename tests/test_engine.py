"""Tests for the compensation calculator."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from nomina_engine.calculators.disability import DisabilityPolicy
from nomina_engine.calculators.engine import CompensationCalculator
from nomina_engine.calculators.line_builder import PayLineBuilder
from nomina_engine.calculators.types import (
    AdjustmentInput,
    AdjustmentType,
    EmployeeInput,
    LineType,
    PeriodType,
)
from nomina_engine.errors import InvalidInputError

AUGUST_2024 = date(2024, 8, 1)


def make_employee(base_salary="1300000", worked_days="30", adjustments=()):
    return EmployeeInput(
        employee_id=uuid4(),
        base_salary=Decimal(base_salary),
        worked_days=Decimal(worked_days),
        adjustments=tuple(adjustments),
    )


@pytest.fixture
def calculator() -> CompensationCalculator:
    return CompensationCalculator()


class TestMonthlyBreakdown:
    """Test a minimum-wage employee over a full month."""

    def test_minimum_wage_full_month(self, calculator):
        result = calculator.calculate(make_employee(), PeriodType.MONTHLY, AUGUST_2024)

        assert result.regular_pay == Decimal("1300000")
        assert result.transport_subsidy == Decimal("162000")
        assert result.gross_pay == Decimal("1462000")
        assert result.ibc == Decimal("1300000")
        assert result.health_deduction == Decimal("52000")
        assert result.pension_deduction == Decimal("52000")
        assert result.solidarity_fund == Decimal("0")
        assert result.total_deductions == Decimal("104000")
        assert result.net_pay == Decimal("1358000")

    def test_employer_contributions_exclude_subsidy(self, calculator):
        result = calculator.calculate(make_employee(), PeriodType.MONTHLY, AUGUST_2024)

        assert result.employer_health == Decimal("110500")
        assert result.employer_pension == Decimal("156000")
        assert result.employer_risk_insurance == Decimal("6786")
        assert result.employer_compensation_fund == Decimal("52000")
        assert result.employer_icbf == Decimal("39000")
        assert result.employer_sena == Decimal("26000")
        assert result.employer_contributions == Decimal("390286")
        assert result.total_payroll_cost == Decimal("1748286")

    def test_totals_are_sums_of_lines(self, calculator):
        result = calculator.calculate(make_employee(), PeriodType.MONTHLY, AUGUST_2024)

        assert PayLineBuilder.calculate_gross_from_lines(result.lines) == result.gross_pay
        assert sum(line.amount for line in result.lines if line.line_type != LineType.EMPLOYER_CONTRIBUTION) == result.net_pay
        employer = [line.amount for line in result.lines if line.line_type == LineType.EMPLOYER_CONTRIBUTION]
        assert all(amount > 0 for amount in employer)
        assert sum(employer) == result.employer_contributions

    def test_no_subsidy_above_cap(self, calculator):
        result = calculator.calculate(make_employee("3000000"), PeriodType.MONTHLY, AUGUST_2024)

        assert result.transport_subsidy == Decimal("0")
        assert result.gross_pay == Decimal("3000000")
        assert "TRANSPORT_SUBSIDY" not in {line.code for line in result.lines}

    def test_solidarity_fund_from_four_minimum_wages(self, calculator):
        result = calculator.calculate(make_employee("6000000"), PeriodType.MONTHLY, AUGUST_2024)

        assert result.solidarity_fund == Decimal("60000")
        assert result.total_deductions == Decimal("540000")


class TestAdjustments:
    """Test novedades flowing into the breakdown."""

    def test_daytime_overtime(self, calculator):
        overtime = AdjustmentInput(AdjustmentType.OVERTIME, hours=Decimal("10"), subtype="daytime")
        result = calculator.calculate(make_employee(adjustments=[overtime]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.hourly_divisor == 199
        assert result.overtime_pay == Decimal("81658")
        assert result.ibc == Decimal("1381658")
        assert result.health_deduction == Decimal("55266")
        assert result.gross_pay == Decimal("1543658")
        assert result.net_pay == Decimal("1433126")
        assert "OVERTIME_DAYTIME" in {line.code for line in result.lines}

    def test_non_constitutive_overtime_keeps_ibc(self, calculator):
        overtime = AdjustmentInput(
            AdjustmentType.OVERTIME, hours=Decimal("10"), subtype="daytime", constitutive=False
        )
        result = calculator.calculate(make_employee(adjustments=[overtime]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.overtime_pay == Decimal("81658")
        assert result.ibc == Decimal("1300000")

    def test_holiday_surcharge_follows_reference_date(self, calculator):
        sunday = AdjustmentInput(AdjustmentType.SUNDAY_SURCHARGE, hours=Decimal("8"))
        employee = make_employee("1423500", adjustments=[sunday])

        before = calculator.calculate(employee, PeriodType.MONTHLY, date(2025, 6, 1))
        after = calculator.calculate(employee, PeriodType.MONTHLY, date(2025, 7, 1))

        # 1,423,500 / 199 * 8 * 0.75 and * 0.80
        assert before.overtime_pay == Decimal("42920")
        assert after.overtime_pay == Decimal("45781")

    def test_bonus_is_not_constitutive_by_default(self, calculator):
        bonus = AdjustmentInput(AdjustmentType.BONUS, value=Decimal("200000"))
        result = calculator.calculate(make_employee(adjustments=[bonus]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.bonuses == Decimal("200000")
        assert result.gross_pay == Decimal("1662000")
        assert result.ibc == Decimal("1300000")

    def test_commission_is_constitutive(self, calculator):
        commission = AdjustmentInput(AdjustmentType.COMMISSION, value=Decimal("500000"))
        result = calculator.calculate(make_employee(adjustments=[commission]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.ibc == Decimal("1800000")
        assert result.health_deduction == Decimal("72000")

    def test_deduction_adjustments(self, calculator):
        loan = AdjustmentInput(AdjustmentType.LOAN, value=Decimal("100000"))
        result = calculator.calculate(make_employee(adjustments=[loan]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.other_deductions == Decimal("100000")
        assert result.net_pay == Decimal("1258000")

    def test_absence_reduces_regular_pay_and_subsidy(self, calculator):
        absence = AdjustmentInput(AdjustmentType.ABSENCE, days=Decimal("3"))
        result = calculator.calculate(
            make_employee(worked_days="27", adjustments=[absence]), PeriodType.MONTHLY, AUGUST_2024
        )

        assert result.effective_worked_days == Decimal("24")
        assert result.regular_pay == Decimal("1040000")
        assert result.transport_subsidy == Decimal("145800")


class TestDisability:
    """Test disability pay policies."""

    def test_standard_policy_two_days_full(self, calculator):
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("5"), subtype="general")
        result = calculator.calculate(
            make_employee("3000000", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
        )

        assert result.regular_pay == Decimal("2500000")
        assert result.disability_pay == Decimal("400010")
        assert "DISABILITY_GENERAL" in {line.code for line in result.lines}

    def test_from_day_one_policy(self):
        calculator = CompensationCalculator(disability_policy=DisabilityPolicy.FROM_DAY_ONE)
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("5"))
        result = calculator.calculate(
            make_employee("3000000", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
        )

        assert result.disability_pay == Decimal("333350")

    def test_work_related_paid_in_full(self, calculator):
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("5"), subtype="laboral")
        result = calculator.calculate(
            make_employee("3000000", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
        )

        assert result.disability_pay == Decimal("500000")

    def test_reduced_rate_floored_at_minimum_wage(self, calculator):
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("6"))
        result = calculator.calculate(make_employee(adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024)

        # 66.67% of a minimum-wage day is below the daily minimum wage
        assert result.disability_pay == Decimal("260000")

    def test_ibc_counts_disability_pay_not_salary(self, calculator):
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("10"), subtype="general")
        result = calculator.calculate(
            make_employee("3000000", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
        )

        # 20 salaried days plus 2 days at 100% and 8 at 66.67%
        assert result.regular_pay == Decimal("2000000")
        assert result.disability_pay == Decimal("733360")
        assert result.ibc == Decimal("2733360")
        assert result.health_deduction == Decimal("109334")

    def test_non_constitutive_disability_excluded_from_ibc(self, calculator):
        disability = AdjustmentInput(
            AdjustmentType.DISABILITY, days=Decimal("10"), subtype="general", constitutive=False
        )
        result = calculator.calculate(
            make_employee("3000000", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
        )

        assert result.ibc == Decimal("2000000")


class TestPeriodTypes:
    """Test weekly and biweekly proration."""

    def test_weekly(self, calculator):
        result = calculator.calculate(make_employee(worked_days="7"), PeriodType.WEEKLY, AUGUST_2024)

        assert result.regular_pay == Decimal("303333")
        assert result.transport_subsidy == Decimal("40500")
        assert result.ibc == Decimal("303333")
        assert result.health_deduction == Decimal("12133")

    def test_biweekly(self, calculator):
        result = calculator.calculate(make_employee(worked_days="15"), PeriodType.BIWEEKLY, AUGUST_2024)

        assert result.regular_pay == Decimal("650000")
        assert result.transport_subsidy == Decimal("81000")
        assert result.ibc == Decimal("650000")
        assert result.net_pay == Decimal("679000")


class TestValidation:
    """Test input validation."""

    def test_collects_every_error(self, calculator):
        employee = make_employee(base_salary="0", worked_days="40")
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(employee, PeriodType.MONTHLY, AUGUST_2024)

        fields = {d.field for d in exc_info.value.details}
        assert {"base_salary", "worked_days"} <= fields
        assert all(d.employee_id == employee.employee_id for d in exc_info.value.details)
        assert exc_info.value.kind == "InvalidInput"

    def test_below_minimum_wage(self, calculator):
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(make_employee("1000000"), PeriodType.MONTHLY, AUGUST_2024)

        assert exc_info.value.details[0].code == "below_minimum_wage"

    def test_weekly_period_caps_worked_days(self, calculator):
        with pytest.raises(InvalidInputError):
            calculator.calculate(make_employee(worked_days="8"), PeriodType.WEEKLY, AUGUST_2024)

    def test_unknown_overtime_subtype(self, calculator):
        overtime = AdjustmentInput(AdjustmentType.OVERTIME, hours=Decimal("2"), subtype="weekend")
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(make_employee(adjustments=[overtime]), PeriodType.MONTHLY, AUGUST_2024)

        assert exc_info.value.details[0].code == "unknown_subtype"

    def test_missing_quantities(self, calculator):
        adjustments = [
            AdjustmentInput(AdjustmentType.OVERTIME),
            AdjustmentInput(AdjustmentType.BONUS),
        ]
        with pytest.raises(InvalidInputError) as exc_info:
            calculator.calculate(make_employee(adjustments=adjustments), PeriodType.MONTHLY, AUGUST_2024)

        assert [d.field for d in exc_info.value.details] == ["adjustments[0].hours", "adjustments[1].value"]

    def test_disability_days_cannot_exceed_worked_days(self, calculator):
        disability = AdjustmentInput(AdjustmentType.DISABILITY, days=Decimal("12"))
        with pytest.raises(InvalidInputError):
            calculator.calculate(
                make_employee(worked_days="10", adjustments=[disability]), PeriodType.MONTHLY, AUGUST_2024
            )


class TestDeterminism:
    """Identical inputs must give identical output."""

    def test_same_inputs_same_result(self, calculator):
        employee = make_employee(
            adjustments=[AdjustmentInput(AdjustmentType.OVERTIME, hours=Decimal("4"), subtype="night")]
        )
        first = calculator.calculate(employee, PeriodType.MONTHLY, AUGUST_2024)
        second = CompensationCalculator().calculate(employee, PeriodType.MONTHLY, AUGUST_2024)

        assert first.calculation_id == second.calculation_id
        assert first.to_dict() == second.to_dict()

    def test_adjustment_order_does_not_change_fingerprint(self, calculator):
        a = AdjustmentInput(AdjustmentType.BONUS, value=Decimal("1000"))
        b = AdjustmentInput(AdjustmentType.LOAN, value=Decimal("500"))
        employee_id = uuid4()
        first = EmployeeInput(employee_id, Decimal("1300000"), Decimal("30"), (a, b))
        second = EmployeeInput(employee_id, Decimal("1300000"), Decimal("30"), (b, a))

        assert (
            calculator.calculate(first, PeriodType.MONTHLY, AUGUST_2024).inputs_fingerprint
            == calculator.calculate(second, PeriodType.MONTHLY, AUGUST_2024).inputs_fingerprint
        )

    def test_engine_version_changes_calculation_id(self):
        employee = make_employee()
        v1 = CompensationCalculator(engine_version="1.0.0").calculate(employee, PeriodType.MONTHLY, AUGUST_2024)
        v2 = CompensationCalculator(engine_version="2.0.0").calculate(employee, PeriodType.MONTHLY, AUGUST_2024)

        assert v1.calculation_id != v2.calculation_id
        assert v1.net_pay == v2.net_pay


class TestWarnings:
    """Test advisory warnings."""

    def test_excessive_overtime(self, calculator):
        overtime = AdjustmentInput(AdjustmentType.OVERTIME, hours=Decimal("60"))
        result = calculator.calculate(make_employee(adjustments=[overtime]), PeriodType.MONTHLY, AUGUST_2024)

        assert any("overtime" in w for w in result.warnings)

    def test_moderate_overtime_has_no_warning(self, calculator):
        overtime = AdjustmentInput(AdjustmentType.OVERTIME, hours=Decimal("10"))
        result = calculator.calculate(make_employee(adjustments=[overtime]), PeriodType.MONTHLY, AUGUST_2024)

        assert result.warnings == []

    def test_high_salary(self, calculator):
        result = calculator.calculate(make_employee("13000000"), PeriodType.MONTHLY, AUGUST_2024)

        assert any("10 minimum wages" in w for w in result.warnings)
