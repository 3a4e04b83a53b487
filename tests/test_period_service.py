"""Tests for period creation, batch calculation and reopen."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from nomina_engine.calculators.types import PeriodType
from nomina_engine.errors import (
    DuplicatePeriodError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
    PeriodLockedError,
)
from nomina_engine.models import PeriodAuditEvent
from nomina_engine.models.base import utcnow
from nomina_engine.services.period_service import suggest_next_period


class TestCreatePeriod:
    """Test period creation rules."""

    async def test_creates_draft_with_audit(self, session, august_period):
        assert august_period.status == "draft"
        assert august_period.version == 1

        events = (
            await session.execute(
                select(PeriodAuditEvent).where(PeriodAuditEvent.period_id == august_period.period_id)
            )
        ).scalars().all()
        assert [e.action for e in events] == ["created"]
        assert events[0].actor_id == "analyst-1"

    async def test_same_range_is_duplicate(self, period_service, test_company, august_period):
        with pytest.raises(DuplicatePeriodError):
            await period_service.create_period(
                test_company.company_id, date(2024, 8, 1), date(2024, 8, 31), "monthly"
            )

    async def test_overlap_with_open_period_is_duplicate(self, period_service, test_company, august_period):
        with pytest.raises(DuplicatePeriodError):
            await period_service.create_period(
                test_company.company_id, date(2024, 8, 16), date(2024, 8, 31), "biweekly"
            )

    async def test_adjacent_period_is_allowed(self, period_service, test_company, august_period):
        september = await period_service.create_period(
            test_company.company_id, date(2024, 9, 1), date(2024, 9, 30), "monthly"
        )
        assert september.status == "draft"

    @pytest.mark.parametrize(
        "start, end, period_type",
        [
            (date(2024, 8, 1), date(2024, 8, 10), "monthly"),
            (date(2024, 8, 1), date(2024, 8, 8), "weekly"),
            (date(2024, 8, 1), date(2024, 8, 20), "biweekly"),
            (date(2024, 8, 10), date(2024, 8, 1), "monthly"),
            (date(2024, 8, 1), date(2024, 8, 31), "quarterly"),
        ],
    )
    async def test_invalid_ranges(self, period_service, test_company, start, end, period_type):
        with pytest.raises(InvalidInputError):
            await period_service.create_period(test_company.company_id, start, end, period_type)

    async def test_unknown_company(self, period_service):
        with pytest.raises(NotFoundError):
            await period_service.create_period(uuid4(), date(2024, 8, 1), date(2024, 8, 31), "monthly")


class TestSuggestNextPeriod:
    """Test next-period suggestions."""

    def test_monthly(self):
        suggestion = suggest_next_period(PeriodType.MONTHLY, date(2024, 1, 31))
        assert (suggestion.start_date, suggestion.end_date) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_monthly_mid_month(self):
        suggestion = suggest_next_period("monthly", date(2024, 1, 14))
        assert (suggestion.start_date, suggestion.end_date) == (date(2024, 1, 15), date(2024, 2, 14))

    def test_biweekly_second_quincena(self):
        suggestion = suggest_next_period("biweekly", date(2024, 8, 15))
        assert (suggestion.start_date, suggestion.end_date) == (date(2024, 8, 16), date(2024, 8, 31))

    def test_biweekly_first_quincena(self):
        suggestion = suggest_next_period("biweekly", date(2024, 2, 29))
        assert (suggestion.start_date, suggestion.end_date) == (date(2024, 3, 1), date(2024, 3, 15))

    def test_weekly(self):
        suggestion = suggest_next_period("weekly", date(2024, 8, 7))
        assert (suggestion.start_date, suggestion.end_date) == (date(2024, 8, 8), date(2024, 8, 14))
        assert suggestion.period_type == PeriodType.WEEKLY


class TestCalculatePeriod:
    """Test batch calculation."""

    async def test_calculates_every_active_employee(
        self, period_service, august_period, minimum_wage_employee, second_employee
    ):
        result = await period_service.calculate_period(august_period.period_id)

        assert result.success_count == 2
        assert result.error_count == 0
        assert result.total_gross == Decimal("3624000")

        records = await period_service.load_records(august_period.period_id)
        record = records[minimum_wage_employee.employee_id]
        assert record.status == "valid"
        assert record.net_pay == Decimal("1358000")
        assert record.is_finalized is False
        assert record.breakdown_json["gross_pay"] == "1462000"

    async def test_invalid_employee_does_not_abort_batch(
        self, period_service, august_period, minimum_wage_employee, employee_factory
    ):
        underpaid = await employee_factory(Decimal("1000000"), first_name="Luis")

        result = await period_service.calculate_period(august_period.period_id)

        assert minimum_wage_employee.employee_id in result.results
        assert result.errors[underpaid.employee_id].kind == "InvalidInput"
        records = await period_service.load_records(august_period.period_id)
        assert records[underpaid.employee_id].status == "error"
        assert records[underpaid.employee_id].errors_json[0]["code"] == "below_minimum_wage"

    async def test_unknown_employee_reported(self, period_service, august_period, minimum_wage_employee):
        missing = uuid4()
        result = await period_service.calculate_period(
            august_period.period_id, [minimum_wage_employee.employee_id, missing]
        )

        assert result.success_count == 1
        assert result.errors[missing].kind == "NotFound"

    async def test_adjustments_and_worked_days(
        self, period_service, august_period, minimum_wage_employee, adjustment_factory
    ):
        await adjustment_factory(
            august_period, minimum_wage_employee, "overtime", hours=Decimal("10"), subtype="daytime"
        )
        result = await period_service.calculate_period(
            august_period.period_id,
            [minimum_wage_employee.employee_id],
            worked_days={minimum_wage_employee.employee_id: Decimal("30")},
        )

        assert result.results[minimum_wage_employee.employee_id].overtime_pay == Decimal("81658")

    async def test_unknown_stored_adjustment_type(
        self, period_service, august_period, minimum_wage_employee, adjustment_factory
    ):
        await adjustment_factory(august_period, minimum_wage_employee, "hazard_pay", value=Decimal("1"))
        result = await period_service.calculate_period(august_period.period_id)

        error = result.errors[minimum_wage_employee.employee_id]
        assert error.details[0].code == "unknown_type"

    async def test_missing_affiliation_warning(self, period_service, august_period, employee_factory):
        employee = await employee_factory(Decimal("1300000"), health_insurer=None)
        result = await period_service.calculate_period(august_period.period_id)

        assert any("health insurer" in w for w in result.results[employee.employee_id].warnings)

    async def test_closed_period_is_locked(self, period_service, closed_period):
        with pytest.raises(PeriodLockedError):
            await period_service.calculate_period(closed_period.period_id)


class TestReopenPeriod:
    """Test audited reopen."""

    async def test_reopen(self, session, period_service, closed_period):
        period = await period_service.reopen_period(
            closed_period.period_id, actor_id="supervisor-7", justification="Missing overtime"
        )

        assert period.status == "reopened"
        assert period.version == 3
        assert period.reopen_count == 1
        assert period.reopened_by == "supervisor-7"

        records = await period_service.load_records(period.period_id)
        assert all(not r.is_finalized for r in records.values())

        event = (
            await session.execute(
                select(PeriodAuditEvent).where(
                    PeriodAuditEvent.period_id == period.period_id,
                    PeriodAuditEvent.action == "reopened",
                )
            )
        ).scalar_one()
        assert event.justification == "Missing overtime"
        assert event.actor_id == "supervisor-7"

    async def test_requires_actor_and_justification(self, period_service, closed_period):
        with pytest.raises(InvalidInputError) as exc_info:
            await period_service.reopen_period(closed_period.period_id, actor_id=" ", justification="")

        assert {d.field for d in exc_info.value.details} == {"actor_id", "justification"}

    async def test_draft_cannot_be_reopened(self, period_service, august_period):
        with pytest.raises(InvalidStateTransitionError):
            await period_service.reopen_period(
                august_period.period_id, actor_id="supervisor-7", justification="typo"
            )


class TestGhostPeriods:
    """Test advisory ghost-period listing."""

    async def test_empty_draft_is_listed(self, period_service, test_company, august_period):
        ghosts = await period_service.find_ghost_periods(test_company.company_id)

        assert [g.period_id for g in ghosts] == [august_period.period_id]
        assert ghosts[0].reasons == ["no employees"]

    async def test_calculated_draft_is_not_listed(
        self, period_service, test_company, august_period, minimum_wage_employee
    ):
        await period_service.calculate_period(august_period.period_id)

        assert await period_service.find_ghost_periods(test_company.company_id) == []

    async def test_stale_draft_is_listed(
        self, period_service, test_company, august_period, minimum_wage_employee
    ):
        await period_service.calculate_period(august_period.period_id)

        ghosts = await period_service.find_ghost_periods(
            test_company.company_id, now=utcnow() + timedelta(days=8)
        )
        assert len(ghosts) == 1
        assert ghosts[0].employee_count == 1
        assert "no activity" in ghosts[0].reasons[0]
