"""Tests for period version history, comparison and restore."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from nomina_engine.calculators.types import AdjustmentType
from nomina_engine.errors import InvalidInputError, InvalidStateTransitionError, NotFoundError
from nomina_engine.models import Adjustment, PeriodAuditEvent
from nomina_engine.services.recalculation_service import (
    AdjustmentChange,
    AdjustmentRecalculationPipeline,
    ChangeAction,
)
from nomina_engine.services.version_service import PeriodVersionService, compare_snapshots


@pytest.fixture
def version_service(session, period_service, coordinator) -> PeriodVersionService:
    return PeriodVersionService(session, period_service=period_service, coordinator=coordinator)


@pytest.fixture
async def reclosed_period(session, period_service, coordinator, closed_period, minimum_wage_employee):
    """August period reopened once to add 10 overtime hours for Ana, then re-closed."""
    await period_service.reopen_period(
        closed_period.period_id, actor_id="supervisor-7", justification="Overtime was not reported"
    )
    pipeline = AdjustmentRecalculationPipeline(session, period_service=period_service, coordinator=coordinator)
    await pipeline.reopen_apply_reclose(
        closed_period.period_id,
        [
            AdjustmentChange(
                action=ChangeAction.ADD,
                employee_id=minimum_wage_employee.employee_id,
                adjustment_type=AdjustmentType.OVERTIME,
                subtype="daytime",
                hours=Decimal("10"),
            )
        ],
        justification="Overtime was not reported",
        actor_id="supervisor-7",
    )
    return await period_service.get_period(closed_period.period_id)


class TestVersionHistory:
    """Test the versions stored at each closure."""

    async def test_first_closure_stores_initial_version(self, version_service, closed_period):
        versions = await version_service.list_versions(closed_period.period_id)

        assert len(versions) == 1
        version = versions[0]
        assert version.version_number == 2
        assert version.version_type == "initial"
        assert version.restored_from is None
        assert version.employee_count == 2
        assert version.total_net == Decimal("3360000")
        assert len(version.snapshot_json["records"]) == 2
        assert version.snapshot_json["adjustments"] == []

    async def test_reclose_stores_another_version(self, version_service, reclosed_period):
        versions = await version_service.list_versions(reclosed_period.period_id)

        assert [(v.version_number, v.version_type) for v in versions] == [(2, "initial"), (4, "reclose")]
        assert versions[1].total_gross == Decimal("3705658")
        assert versions[1].snapshot_json["adjustments"][0]["adjustment_type"] == "overtime"

    async def test_unknown_version(self, version_service, closed_period):
        with pytest.raises(NotFoundError):
            await version_service.get_version(closed_period.period_id, 7)


class TestVersionComparison:
    """Test employee-level comparison between versions."""

    async def test_compare_first_and_latest(self, version_service, reclosed_period, minimum_wage_employee):
        comparison = await version_service.compare(reclosed_period.period_id)

        assert (comparison.from_version, comparison.to_version) == (2, 4)
        # Carlos was recalculated to the same figures and is left out
        assert len(comparison.employees) == 1
        change = comparison.employees[0]
        assert change.employee_id == minimum_wage_employee.employee_id
        assert change.change_type == "values_modified"

        fields = {c.field: c for c in change.field_changes}
        assert fields["gross_pay"].before == Decimal("1462000")
        assert fields["gross_pay"].after == Decimal("1543658")
        assert fields["gross_pay"].difference == Decimal("81658")
        assert "base_salary" not in fields
        assert change.impact == fields["net_pay"].difference

        assert [c.action for c in change.adjustment_changes] == ["added"]
        assert comparison.count_adjustments("added") == 1
        assert comparison.total_impact == change.impact

    async def test_compare_version_with_itself(self, version_service, reclosed_period):
        comparison = await version_service.compare(reclosed_period.period_id, from_version=4, to_version=4)
        assert comparison.employees == []
        assert comparison.total_impact == Decimal("0")

    async def test_compare_unknown_version(self, version_service, closed_period):
        with pytest.raises(NotFoundError):
            await version_service.compare(closed_period.period_id, from_version=2, to_version=9)

    async def test_never_closed_period(self, version_service, august_period):
        with pytest.raises(NotFoundError):
            await version_service.compare(august_period.period_id)

    def test_employee_added_and_removed(self):
        before = {
            "records": [{"employee_id": "00000000-0000-0000-0000-000000000001", "net_pay": "1000"}],
            "adjustments": [],
        }
        after = {
            "records": [{"employee_id": "00000000-0000-0000-0000-000000000002", "net_pay": "1500"}],
            "adjustments": [],
        }

        changes = {str(c.employee_id)[-1]: c for c in compare_snapshots(before, after)}

        assert changes["1"].change_type == "employee_removed"
        assert changes["1"].impact == Decimal("-1000")
        assert changes["2"].change_type == "employee_added"
        assert changes["2"].impact == Decimal("1500")

    def test_modified_adjustment_value(self):
        record = {"employee_id": "00000000-0000-0000-0000-000000000001", "net_pay": "1000"}
        adjustment = {
            "adjustment_id": "00000000-0000-0000-0000-0000000000aa",
            "employee_id": record["employee_id"],
            "adjustment_type": "loan",
            "subtype": None,
            "value": "50000",
            "hours": None,
            "days": None,
        }
        before = {"records": [record], "adjustments": [adjustment]}
        after = {"records": [record], "adjustments": [dict(adjustment, value="20000")]}

        [change] = compare_snapshots(before, after)

        assert change.change_type == "adjustments_modified"
        assert change.adjustment_changes[0].value_difference == Decimal("-30000")


class TestRestoreVersion:
    """Test restoring a reopened period to an earlier version."""

    async def test_restore_initial_version(
        self, session, version_service, period_service, reclosed_period
    ):
        period_id = reclosed_period.period_id
        await period_service.reopen_period(
            period_id, actor_id="supervisor-7", justification="Overtime was reported twice"
        )

        result = await version_service.restore_version(
            period_id, 2, actor_id="supervisor-7", justification="Overtime was reported twice"
        )

        assert result.status == "closed"
        assert result.totals.total_gross == Decimal("3624000")
        assert result.totals.total_net == Decimal("3360000")
        assert result.verification.consistent is True

        versions = await version_service.list_versions(period_id)
        latest = versions[-1]
        assert (latest.version_number, latest.version_type, latest.restored_from) == (6, "restore", 2)

        adjustments = (
            await session.execute(select(Adjustment).where(Adjustment.period_id == period_id))
        ).scalars().all()
        assert adjustments == []

        actions = (
            await session.execute(
                select(PeriodAuditEvent.action).where(PeriodAuditEvent.period_id == period_id)
            )
        ).scalars().all()
        assert "version_restored" in actions

        comparison = await version_service.compare(period_id, from_version=2, to_version=6)
        assert comparison.employees == []

    async def test_restore_brings_back_adjustments(
        self, version_service, period_service, reclosed_period
    ):
        period_id = reclosed_period.period_id
        await period_service.reopen_period(period_id, actor_id="supervisor-7", justification="Audit")
        await version_service.restore_version(period_id, 2, actor_id="supervisor-7", justification="Audit")
        await period_service.reopen_period(period_id, actor_id="supervisor-7", justification="Audit")

        result = await version_service.restore_version(
            period_id, 4, actor_id="supervisor-7", justification="Overtime confirmed"
        )

        assert result.totals.total_gross == Decimal("3705658")

    async def test_restore_requires_reopened_period(self, version_service, closed_period):
        with pytest.raises(InvalidStateTransitionError):
            await version_service.restore_version(
                closed_period.period_id, 2, actor_id="supervisor-7", justification="Audit"
            )

    async def test_restore_requires_justification(self, version_service, closed_period):
        with pytest.raises(InvalidInputError) as exc_info:
            await version_service.restore_version(
                closed_period.period_id, 2, actor_id="supervisor-7", justification=" "
            )
        assert exc_info.value.details[0].field == "justification"
