"""Tests for the transactional closure coordinator."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from nomina_engine.errors import (
    ClosureTimeoutError,
    ConcurrentModificationError,
    CriticalInconsistencyError,
    InvalidStateTransitionError,
    ValidationFailedError,
)
from nomina_engine.models import Employee, PayrollPeriod, PayrollPeriodVersion, PeriodAuditEvent
from nomina_engine.services.closure_service import ClosureCoordinator
from nomina_engine.services.retry import RetryPolicy


@pytest.fixture
async def calculated_period(period_service, august_period, minimum_wage_employee, second_employee):
    """August period with both employees calculated."""
    await period_service.calculate_period(august_period.period_id)
    return august_period


@pytest.fixture
def employee_ids(minimum_wage_employee, second_employee):
    return [minimum_wage_employee.employee_id, second_employee.employee_id]


class TestSuccessfulClosure:
    """Test the happy path."""

    async def test_close_two_employees(self, session, coordinator, period_service, calculated_period, employee_ids):
        result = await coordinator.close(calculated_period.period_id, employee_ids, actor_id="analyst-1")

        assert result.status == "closed"
        assert result.transaction_id.startswith("closure_")
        assert result.totals.total_gross == Decimal("3624000")
        assert result.totals.total_deductions == Decimal("264000")
        assert result.totals.total_net == Decimal("3360000")
        assert result.totals.employee_count == 2
        assert result.verification.consistent is True
        assert result.rollback_executed is False
        assert (result.next_period.start_date, result.next_period.end_date) == (
            date(2024, 9, 1),
            date(2024, 9, 30),
        )

        period = await period_service.get_period(calculated_period.period_id)
        assert period.status == "closed"
        assert period.version == 2
        assert period.closed_at is not None
        assert period.total_net == Decimal("3360000")

        records = await period_service.load_records(period.period_id)
        assert all(r.is_finalized for r in records.values())

        actions = (
            await session.execute(
                select(PeriodAuditEvent.action).where(PeriodAuditEvent.period_id == period.period_id)
            )
        ).scalars().all()
        assert "closed" in actions

    async def test_closing_twice_is_an_invalid_transition(self, coordinator, calculated_period, employee_ids):
        await coordinator.close(calculated_period.period_id, employee_ids)

        with pytest.raises(InvalidStateTransitionError):
            await coordinator.close(calculated_period.period_id, employee_ids)

    async def test_subset_closure_totals_only_selected(
        self, coordinator, calculated_period, minimum_wage_employee
    ):
        result = await coordinator.close(calculated_period.period_id, [minimum_wage_employee.employee_id])

        assert result.totals.total_gross == Decimal("1462000")
        assert result.totals.employee_count == 1
        assert result.verification.consistent is True


class TestClosureValidation:
    """Test pre-validation; nothing may be written when it fails."""

    async def test_collects_every_failure(
        self, coordinator, period_service, august_period, minimum_wage_employee, second_employee
    ):
        await period_service.calculate_period(august_period.period_id, [minimum_wage_employee.employee_id])
        unknown = uuid4()

        with pytest.raises(ValidationFailedError) as exc_info:
            await coordinator.close(
                august_period.period_id,
                [minimum_wage_employee.employee_id, second_employee.employee_id, unknown],
            )

        codes = {(d.employee_id, d.code) for d in exc_info.value.details}
        assert (second_employee.employee_id, "not_calculated") in codes
        assert (unknown, "unknown_employee") in codes
        assert exc_info.value.rollback_executed is False

        period = await period_service.get_period(august_period.period_id)
        assert period.status == "draft"
        assert period.version == 1

    async def test_empty_selection(self, coordinator, calculated_period):
        with pytest.raises(ValidationFailedError) as exc_info:
            await coordinator.close(calculated_period.period_id, [])

        assert exc_info.value.details[0].code == "empty"

    async def test_error_record_blocks_closure(
        self, coordinator, period_service, august_period, minimum_wage_employee, employee_factory
    ):
        underpaid = await employee_factory(Decimal("1000000"))
        await period_service.calculate_period(august_period.period_id)

        with pytest.raises(ValidationFailedError) as exc_info:
            await coordinator.close(
                august_period.period_id, [minimum_wage_employee.employee_id, underpaid.employee_id]
            )

        assert [d.code for d in exc_info.value.details] == ["invalid_calculation"]

    async def test_reclose_rejects_records_that_no_longer_calculate(
        self, session, coordinator, period_service, closed_period, employee_ids, second_employee
    ):
        await period_service.reopen_period(
            closed_period.period_id, actor_id="supervisor-7", justification="Salary correction"
        )
        # Lowered below the minimum wage after the records were calculated
        await session.execute(
            update(Employee)
            .where(Employee.employee_id == second_employee.employee_id)
            .values(base_salary=Decimal("1000000"))
        )
        await session.refresh(second_employee)

        with pytest.raises(ValidationFailedError) as exc_info:
            await coordinator.close(closed_period.period_id, employee_ids)

        assert exc_info.value.kind == "ValidationFailed"
        assert exc_info.value.rollback_executed is False
        codes = {(d.employee_id, d.field, d.code) for d in exc_info.value.details}
        assert (second_employee.employee_id, "base_salary", "below_minimum_wage") in codes

        period = await period_service.get_period(closed_period.period_id)
        assert period.status == "reopened"
        assert period.version == 3
        versions = await session.scalar(select(func.count()).select_from(PayrollPeriodVersion))
        assert versions == 1


class TestClosureFailures:
    """Test rollback, timeout and concurrency paths."""

    async def test_database_failure_restores_snapshot(
        self, session, coordinator, period_service, calculated_period, employee_ids, monkeypatch
    ):
        period = await period_service.get_period(calculated_period.period_id)
        before = await coordinator._capture_snapshot(period)

        async def failing_audit(*args, **kwargs):
            raise OperationalError("INSERT INTO period_audit_event", {}, Exception("database is locked"))

        # Fails after records are finalized and the version is stored
        monkeypatch.setattr(period_service, "record_audit", failing_audit)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await coordinator.close(calculated_period.period_id, employee_ids)

        assert exc_info.value.kind == "ConcurrentModification"
        assert exc_info.value.rollback_executed is True
        assert exc_info.value.details[0].code == "commit_aborted"
        assert isinstance(exc_info.value.__cause__, OperationalError)

        period = await period_service.get_period(calculated_period.period_id)
        after = await coordinator._capture_snapshot(period)
        assert after == before
        assert period.status == "draft"

        records = await period_service.load_records(period.period_id)
        assert not any(r.is_finalized for r in records.values())
        versions = await session.scalar(select(func.count()).select_from(PayrollPeriodVersion))
        assert versions == 0

    async def test_unexpected_failure_restores_snapshot_and_propagates(
        self, coordinator, period_service, calculated_period, employee_ids, monkeypatch
    ):
        period = await period_service.get_period(calculated_period.period_id)
        before = await coordinator._capture_snapshot(period)

        async def failing_finalize(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(coordinator, "_finalize_records", failing_finalize)

        with pytest.raises(RuntimeError, match="disk full"):
            await coordinator.close(calculated_period.period_id, employee_ids)

        period = await period_service.get_period(calculated_period.period_id)
        after = await coordinator._capture_snapshot(period)
        assert after == before
        assert period.status == "draft"

        records = await period_service.load_records(period.period_id)
        assert not any(r.is_finalized for r in records.values())

    async def test_failed_rollback_is_critical(
        self, coordinator, calculated_period, employee_ids, monkeypatch
    ):
        attempts = []

        async def failing_finalize(*args, **kwargs):
            raise RuntimeError("disk full")

        async def failing_restore(snapshot):
            attempts.append(snapshot)
            raise ConnectionError("connection lost")

        monkeypatch.setattr(coordinator, "_finalize_records", failing_finalize)
        monkeypatch.setattr(coordinator, "_restore_snapshot", failing_restore)

        with pytest.raises(CriticalInconsistencyError) as exc_info:
            await coordinator.close(calculated_period.period_id, employee_ids)

        assert len(attempts) == 3
        assert exc_info.value.kind == "CriticalInconsistency"
        assert isinstance(exc_info.value.cause, ConnectionError)

    async def test_timeout_rolls_back(
        self, session, settings, period_service, calculated_period, employee_ids, monkeypatch
    ):
        coordinator = ClosureCoordinator(
            session,
            period_service=period_service,
            retry_policy=RetryPolicy(max_attempts=1, backoff_seconds=0),
            timeout_seconds=0.05,
            settings=settings,
        )

        async def slow_commit(*args, **kwargs):
            await asyncio.sleep(5)

        monkeypatch.setattr(coordinator, "_atomic_commit", slow_commit)

        with pytest.raises(ClosureTimeoutError) as exc_info:
            await coordinator.close(calculated_period.period_id, employee_ids)

        assert exc_info.value.kind == "Timeout"
        assert exc_info.value.rollback_executed is True
        period = await period_service.get_period(calculated_period.period_id)
        assert period.status == "draft"

    async def test_concurrent_modification(
        self, session, coordinator, period_service, calculated_period, employee_ids, monkeypatch
    ):
        capture = coordinator._capture_snapshot

        async def capture_then_race(period):
            snapshot = await capture(period)
            # Another writer bumps the version after our snapshot
            await session.execute(
                update(PayrollPeriod)
                .where(PayrollPeriod.period_id == period.period_id)
                .values(version=PayrollPeriod.version + 1)
            )
            return snapshot

        monkeypatch.setattr(coordinator, "_capture_snapshot", capture_then_race)

        with pytest.raises(ConcurrentModificationError):
            await coordinator.close(calculated_period.period_id, employee_ids)

        period = await period_service.get_period(calculated_period.period_id)
        assert period.status == "draft"
        records = await period_service.load_records(period.period_id)
        assert not any(r.is_finalized for r in records.values())


class TestVerification:
    """Test post-closure verification."""

    async def test_detects_tampered_totals(self, session, coordinator, closed_period):
        await session.execute(
            update(PayrollPeriod)
            .where(PayrollPeriod.period_id == closed_period.period_id)
            .values(total_net=Decimal("1"))
        )

        report = await coordinator.verify(closed_period.period_id)

        assert report.consistent is False
        assert report.mismatches[0].startswith("total_net")
