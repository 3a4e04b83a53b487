"""Payroll period service - creation, batch calculation and audited reopen."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from nomina_engine.calculators.engine import CompensationCalculator
from nomina_engine.calculators.types import (
    AdjustmentInput,
    AdjustmentType,
    EmployeeInput,
    PayBreakdown,
    PeriodType,
)
from nomina_engine.config import Settings, get_settings
from nomina_engine.errors import (
    ConcurrentModificationError,
    DuplicatePeriodError,
    ErrorDetail,
    InvalidInputError,
    NotFoundError,
    PayrollError,
    PeriodLockedError,
)
from nomina_engine.models import (
    Adjustment,
    Company,
    Employee,
    PayrollPeriod,
    PayrollRecord,
    PeriodAuditEvent,
)
from nomina_engine.models.base import utcnow
from nomina_engine.services.state_machine import (
    PeriodStateMachine,
    PeriodStatus,
    classify_ghost,
)

logger = logging.getLogger(__name__)

# Inclusive day spans accepted for each period type
PERIOD_DAY_SPANS: dict[PeriodType, tuple[int, int]] = {
    PeriodType.WEEKLY: (7, 7),
    PeriodType.BIWEEKLY: (13, 16),
    PeriodType.MONTHLY: (28, 31),
}


@dataclass(frozen=True)
class NextPeriodSuggestion:
    """Date range the caller will most likely want to open next."""

    period_type: PeriodType
    start_date: date
    end_date: date


def suggest_next_period(period_type: PeriodType | str, end_date: date) -> NextPeriodSuggestion:
    """Suggest the period following one that ended on ``end_date``.

    Biweekly periods follow calendar quincenas (1-15, 16-end of month) when
    the next start is aligned to one; monthly periods span one month.
    """
    period_type = PeriodType(period_type)
    start = end_date + timedelta(days=1)
    last_day = calendar.monthrange(start.year, start.month)[1]

    if period_type == PeriodType.WEEKLY:
        end = start + timedelta(days=6)
    elif period_type == PeriodType.BIWEEKLY:
        if start.day == 1:
            end = start.replace(day=15)
        elif start.day == 16:
            end = start.replace(day=last_day)
        else:
            end = start + timedelta(days=14)
    elif start.day == 1:
        end = start.replace(day=last_day)
    else:
        year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
        day = min(start.day, calendar.monthrange(year, month)[1])
        end = date(year, month, day) - timedelta(days=1)

    return NextPeriodSuggestion(period_type=period_type, start_date=start, end_date=end)


@dataclass
class BatchCalculationResult:
    """Per-employee outcome of calculating a period."""

    period_id: UUID
    results: dict[UUID, PayBreakdown] = field(default_factory=dict)
    errors: dict[UUID, PayrollError] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.results)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def total_gross(self) -> Decimal:
        return sum((b.gross_pay for b in self.results.values()), Decimal("0"))

    @property
    def total_net(self) -> Decimal:
        return sum((b.net_pay for b in self.results.values()), Decimal("0"))


@dataclass(frozen=True)
class GhostPeriod:
    period_id: UUID
    company_id: UUID
    start_date: date
    end_date: date
    employee_count: int
    reasons: list[str]


def adjustment_to_input(adjustment: Adjustment) -> AdjustmentInput:
    """Convert a stored novedad to calculator input.

    Raises ValueError for an unknown adjustment type.
    """
    return AdjustmentInput(
        adjustment_type=AdjustmentType(adjustment.adjustment_type),
        value=adjustment.value,
        hours=adjustment.hours,
        days=adjustment.days,
        subtype=adjustment.subtype,
        constitutive=adjustment.constitutive,
        adjustment_id=adjustment.adjustment_id,
    )


class PeriodService:
    """Service for payroll period lifecycle outside of closure.

    Operations:
    - create_period: Open a draft period, refusing overlapping open periods
    - calculate_period: Run the calculator for every selected employee
    - reopen_period: Audited closed → reopened transition
    - find_ghost_periods: Advisory list of abandoned drafts
    """

    def __init__(
        self,
        session: AsyncSession,
        calculator: CompensationCalculator | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.calculator = calculator or CompensationCalculator(
            disability_policy=self.settings.disability_policy,
            engine_version=self.settings.engine_version,
        )

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        """Load a period, raising NotFoundError if it does not exist."""
        result = await self.session.execute(
            select(PayrollPeriod)
            .where(PayrollPeriod.period_id == period_id)
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError(f"Payroll period {period_id} not found")
        return period

    # === Creation ===

    async def create_period(
        self,
        company_id: UUID,
        start_date: date,
        end_date: date,
        period_type: PeriodType | str,
        actor_id: str | None = None,
    ) -> PayrollPeriod:
        """Create a draft period.

        Raises:
            InvalidInputError: Bad period type or date range
            DuplicatePeriodError: An open period overlaps the range, or the
                exact range already exists
        """
        company = await self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError(f"Company {company_id} not found")

        try:
            period_type = PeriodType(period_type)
        except ValueError:
            raise InvalidInputError(
                [ErrorDetail(f"unknown period type '{period_type}'", field="period_type")]
            ) from None

        if end_date < start_date:
            raise InvalidInputError(
                [ErrorDetail("end date precedes start date", field="end_date", code="invalid_range")]
            )
        span = (end_date - start_date).days + 1
        low, high = PERIOD_DAY_SPANS[period_type]
        if not low <= span <= high:
            raise InvalidInputError(
                [
                    ErrorDetail(
                        f"a {period_type.value} period spans {low}-{high} days, got {span}",
                        field="end_date",
                        code="invalid_span",
                    )
                ]
            )

        conflicts = await self.session.execute(
            select(PayrollPeriod).where(
                PayrollPeriod.company_id == company_id,
                PayrollPeriod.start_date <= end_date,
                PayrollPeriod.end_date >= start_date,
            )
        )
        for existing in conflicts.scalars():
            same_range = existing.start_date == start_date and existing.end_date == end_date
            if same_range or PeriodStateMachine.is_editable(existing.status):
                raise DuplicatePeriodError(
                    f"Period {existing.period_id} ({existing.start_date} - {existing.end_date}, "
                    f"{existing.status}) overlaps the requested range",
                    [
                        ErrorDetail(
                            f"overlaps period {existing.period_id}",
                            field="start_date",
                            code="duplicate_period",
                        )
                    ],
                )

        period = PayrollPeriod(
            company_id=company_id,
            start_date=start_date,
            end_date=end_date,
            period_type=period_type.value,
            status=PeriodStatus.DRAFT.value,
        )
        self.session.add(period)
        await self.session.flush()
        await self.record_audit(period.period_id, "created", actor_id=actor_id)
        logger.info(
            "Created %s period %s (%s - %s) for company %s",
            period_type.value,
            period.period_id,
            start_date,
            end_date,
            company_id,
        )
        return period

    # === Loading ===

    async def load_adjustments(
        self, period_id: UUID, employee_ids: Iterable[UUID] | None = None
    ) -> dict[UUID, list[Adjustment]]:
        """Load adjustments grouped by employee."""
        query = select(Adjustment).where(Adjustment.period_id == period_id)
        if employee_ids is not None:
            query = query.where(Adjustment.employee_id.in_(list(employee_ids)))
        result = await self.session.execute(
            query.order_by(Adjustment.created_at, Adjustment.adjustment_id).execution_options(
                populate_existing=True
            )
        )
        grouped: dict[UUID, list[Adjustment]] = {}
        for adjustment in result.scalars():
            grouped.setdefault(adjustment.employee_id, []).append(adjustment)
        return grouped

    async def load_records(
        self, period_id: UUID, employee_ids: Iterable[UUID] | None = None
    ) -> dict[UUID, PayrollRecord]:
        """Load payroll records keyed by employee."""
        query = select(PayrollRecord).where(PayrollRecord.period_id == period_id)
        if employee_ids is not None:
            query = query.where(PayrollRecord.employee_id.in_(list(employee_ids)))
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return {record.employee_id: record for record in result.scalars()}

    async def _load_employees(
        self, company_id: UUID, employee_ids: Iterable[UUID] | None
    ) -> list[Employee]:
        query = select(Employee).where(Employee.company_id == company_id)
        if employee_ids is None:
            query = query.where(Employee.status == "active")
        else:
            query = query.where(Employee.employee_id.in_(list(employee_ids)))
        result = await self.session.execute(query.order_by(Employee.employee_id))
        return list(result.scalars())

    # === Calculation ===

    def build_employee_input(
        self,
        employee: Employee,
        worked_days: Decimal,
        adjustments: Iterable[Adjustment | AdjustmentInput],
    ) -> EmployeeInput:
        """Build calculator input, reporting unknown adjustment types as InvalidInput."""
        inputs: list[AdjustmentInput] = []
        details: list[ErrorDetail] = []
        for i, adjustment in enumerate(adjustments):
            if isinstance(adjustment, AdjustmentInput):
                inputs.append(adjustment)
                continue
            try:
                inputs.append(adjustment_to_input(adjustment))
            except ValueError:
                details.append(
                    ErrorDetail(
                        f"unknown adjustment type '{adjustment.adjustment_type}'",
                        field=f"adjustments[{i}].adjustment_type",
                        employee_id=employee.employee_id,
                        code="unknown_type",
                    )
                )
        if details:
            raise InvalidInputError(details, employee_id=employee.employee_id)

        return EmployeeInput(
            employee_id=employee.employee_id,
            base_salary=Decimal(employee.base_salary),
            worked_days=Decimal(worked_days),
            adjustments=tuple(inputs),
        )

    def calculate_employee(
        self,
        period: PayrollPeriod,
        employee: Employee,
        worked_days: Decimal,
        adjustments: Iterable[Adjustment | AdjustmentInput],
    ) -> PayBreakdown:
        """Pure calculation for one employee, pinned to the period's start date."""
        employee_input = self.build_employee_input(employee, worked_days, adjustments)
        breakdown = self.calculator.calculate(
            employee_input, PeriodType(period.period_type), period.start_date
        )
        if not employee.health_insurer:
            breakdown.warnings.append("Employee has no health insurer affiliation")
        if not employee.pension_fund:
            breakdown.warnings.append("Employee has no pension fund affiliation")
        return breakdown

    async def calculate_period(
        self,
        period_id: UUID,
        employee_ids: Iterable[UUID] | None = None,
        worked_days: dict[UUID, Decimal] | None = None,
    ) -> BatchCalculationResult:
        """Calculate and store records for a period.

        Per-employee InvalidInput is collected into the result instead of
        aborting the batch; the employee's record is stored with status
        ``error``.
        """
        period = await self.get_period(period_id)
        if not PeriodStateMachine.is_editable(period.status):
            raise PeriodLockedError(period.period_id, period.status)

        requested = list(dict.fromkeys(employee_ids)) if employee_ids is not None else None
        employees = await self._load_employees(period.company_id, requested)
        result = BatchCalculationResult(period_id=period_id)

        if requested is not None:
            found = {e.employee_id for e in employees}
            for missing in requested:
                if missing not in found:
                    result.errors[missing] = NotFoundError(
                        f"Employee {missing} not found in company {period.company_id}",
                        [ErrorDetail("unknown employee", field="employee_id", employee_id=missing)],
                    )

        ids = [e.employee_id for e in employees]
        adjustments = await self.load_adjustments(period_id, ids)
        records = await self.load_records(period_id, ids)
        default_days = Decimal(PeriodType(period.period_type).max_days)

        for employee in employees:
            days = self._resolve_worked_days(
                employee.employee_id, worked_days, records, default_days
            )
            try:
                breakdown = self.calculate_employee(
                    period, employee, days, adjustments.get(employee.employee_id, [])
                )
            except InvalidInputError as exc:
                logger.warning("Calculation rejected for employee %s: %s", employee.employee_id, exc)
                result.errors[employee.employee_id] = exc
                self._write_error_record(period, employee, records, days, exc)
                continue
            result.results[employee.employee_id] = breakdown
            self._write_record(period, employee, records, days, breakdown)

        period.last_activity_at = utcnow()
        await self.session.flush()
        logger.info(
            "Calculated period %s: %d ok, %d with errors",
            period_id,
            result.success_count,
            result.error_count,
        )
        return result

    async def check_recalculation(
        self, period: PayrollPeriod, employee_ids: Iterable[UUID]
    ) -> list[ErrorDetail]:
        """Recalculate in memory and collect every InvalidInput detail.

        Nothing is written. Details always name the employee.
        """
        ids = list(employee_ids)
        employees = await self._load_employees(period.company_id, ids)
        adjustments = await self.load_adjustments(period.period_id, ids)
        records = await self.load_records(period.period_id, ids)
        default_days = Decimal(PeriodType(period.period_type).max_days)

        details: list[ErrorDetail] = []
        for employee in employees:
            days = self._resolve_worked_days(employee.employee_id, None, records, default_days)
            try:
                self.calculate_employee(
                    period, employee, days, adjustments.get(employee.employee_id, [])
                )
            except InvalidInputError as exc:
                details.extend(
                    d if d.employee_id else replace(d, employee_id=employee.employee_id)
                    for d in exc.details
                )
        return details

    async def recalculate_records(
        self,
        period: PayrollPeriod,
        employee_ids: Iterable[UUID],
        worked_days: dict[UUID, Decimal] | None = None,
    ) -> dict[UUID, PayBreakdown]:
        """Recalculate stored records from current adjustments.

        Unlike calculate_period, any InvalidInput aborts the whole call.
        """
        ids = list(employee_ids)
        employees = await self._load_employees(period.company_id, ids)
        adjustments = await self.load_adjustments(period.period_id, ids)
        records = await self.load_records(period.period_id, ids)
        default_days = Decimal(PeriodType(period.period_type).max_days)

        breakdowns: dict[UUID, PayBreakdown] = {}
        for employee in employees:
            days = self._resolve_worked_days(
                employee.employee_id, worked_days, records, default_days
            )
            breakdown = self.calculate_employee(
                period, employee, days, adjustments.get(employee.employee_id, [])
            )
            self._write_record(period, employee, records, days, breakdown)
            breakdowns[employee.employee_id] = breakdown
        await self.session.flush()
        return breakdowns

    @staticmethod
    def _resolve_worked_days(
        employee_id: UUID,
        worked_days: dict[UUID, Decimal] | None,
        records: dict[UUID, PayrollRecord],
        default_days: Decimal,
    ) -> Decimal:
        if worked_days and employee_id in worked_days:
            return Decimal(worked_days[employee_id])
        if employee_id in records:
            return Decimal(records[employee_id].worked_days)
        return default_days

    def _get_or_create_record(
        self,
        period: PayrollPeriod,
        employee: Employee,
        records: dict[UUID, PayrollRecord],
        worked_days: Decimal,
    ) -> PayrollRecord:
        record = records.get(employee.employee_id)
        if record is None:
            record = PayrollRecord(
                period_id=period.period_id,
                employee_id=employee.employee_id,
                base_salary=employee.base_salary,
                worked_days=worked_days,
            )
            self.session.add(record)
            records[employee.employee_id] = record
        return record

    def _write_record(
        self,
        period: PayrollPeriod,
        employee: Employee,
        records: dict[UUID, PayrollRecord],
        worked_days: Decimal,
        breakdown: PayBreakdown,
    ) -> PayrollRecord:
        record = self._get_or_create_record(period, employee, records, worked_days)
        record.status = "valid"
        record.base_salary = breakdown.base_salary
        record.worked_days = worked_days
        record.regular_pay = breakdown.regular_pay
        record.overtime_pay = breakdown.overtime_pay
        record.bonuses = breakdown.bonuses
        record.disability_pay = breakdown.disability_pay
        record.transport_subsidy = breakdown.transport_subsidy
        record.gross_pay = breakdown.gross_pay
        record.ibc = breakdown.ibc
        record.health_deduction = breakdown.health_deduction
        record.pension_deduction = breakdown.pension_deduction
        record.solidarity_fund = breakdown.solidarity_fund
        record.other_deductions = breakdown.other_deductions
        record.total_deductions = breakdown.total_deductions
        record.net_pay = breakdown.net_pay
        record.employer_contributions = breakdown.employer_contributions
        record.total_payroll_cost = breakdown.total_payroll_cost
        record.calculation_id = breakdown.calculation_id
        record.breakdown_json = breakdown.to_dict()
        record.errors_json = None
        record.calculated_at = utcnow()
        return record

    def _write_error_record(
        self,
        period: PayrollPeriod,
        employee: Employee,
        records: dict[UUID, PayrollRecord],
        worked_days: Decimal,
        error: PayrollError,
    ) -> PayrollRecord:
        record = self._get_or_create_record(period, employee, records, worked_days)
        record.status = "error"
        record.worked_days = worked_days
        record.errors_json = [d.to_dict() for d in error.details]
        record.calculated_at = utcnow()
        return record

    # === Reopen ===

    async def reopen_period(
        self,
        period_id: UUID,
        actor_id: str,
        justification: str,
    ) -> PayrollPeriod:
        """Reopen a closed period for corrections.

        Requires an authorized actor and a justification; both are written
        to the audit trail. Records become editable again.
        """
        details = []
        if not actor_id or not actor_id.strip():
            details.append(ErrorDetail("actor is required to reopen", field="actor_id", code="required"))
        if not justification or not justification.strip():
            details.append(
                ErrorDetail("justification is required to reopen", field="justification", code="required")
            )
        if details:
            raise InvalidInputError(details)

        period = await self.get_period(period_id)
        PeriodStateMachine.validate_transition(period.status, PeriodStatus.REOPENED)

        await self.session.flush()
        now = utcnow()
        result = await self.session.execute(
            update(PayrollPeriod)
            .where(
                PayrollPeriod.period_id == period_id,
                PayrollPeriod.status == PeriodStatus.CLOSED.value,
                PayrollPeriod.version == period.version,
            )
            .values(
                status=PeriodStatus.REOPENED.value,
                version=PayrollPeriod.version + 1,
                reopen_count=PayrollPeriod.reopen_count + 1,
                reopened_at=now,
                reopened_by=actor_id,
                last_activity_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError(
                f"Period {period_id} changed while reopening",
                [ErrorDetail("period version changed", field="version", code="stale_version")],
            )

        await self.session.execute(
            update(PayrollRecord)
            .where(PayrollRecord.period_id == period_id)
            .values(is_finalized=False, finalized_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.record_audit(
            period_id,
            "reopened",
            actor_id=actor_id,
            justification=justification,
            details={"previous_version": period.version},
        )
        await self.session.refresh(period)
        logger.info("Period %s reopened by %s", period_id, actor_id)
        return period

    # === Audit & bookkeeping ===

    async def record_audit(
        self,
        period_id: UUID,
        action: str,
        actor_id: str | None = None,
        justification: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> PeriodAuditEvent:
        """Append an audit event for a period."""
        event = PeriodAuditEvent(
            period_id=period_id,
            action=action,
            actor_id=actor_id,
            justification=justification,
            details_json=details,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def find_ghost_periods(
        self,
        company_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[GhostPeriod]:
        """List draft periods that look abandoned. Nothing is deleted."""
        now = now or utcnow()
        record_counts = (
            select(PayrollRecord.period_id, func.count().label("employee_count"))
            .group_by(PayrollRecord.period_id)
            .subquery()
        )
        query = (
            select(PayrollPeriod, func.coalesce(record_counts.c.employee_count, 0))
            .outerjoin(record_counts, record_counts.c.period_id == PayrollPeriod.period_id)
            .where(PayrollPeriod.status == PeriodStatus.DRAFT.value)
        )
        if company_id is not None:
            query = query.where(PayrollPeriod.company_id == company_id)

        ghosts = []
        for period, employee_count in (await self.session.execute(query)).all():
            assessment = classify_ghost(
                period.status,
                employee_count,
                period.last_activity_at,
                now,
                self.settings.ghost_period_staleness_days,
            )
            if assessment.is_ghost:
                ghosts.append(
                    GhostPeriod(
                        period_id=period.period_id,
                        company_id=period.company_id,
                        start_date=period.start_date,
                        end_date=period.end_date,
                        employee_count=employee_count,
                        reasons=assessment.reasons,
                    )
                )
        return ghosts
