"""Social benefit accruals backed by stored calculations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nomina_engine.calculators.benefits import BenefitAccrual, BenefitType, SocialBenefitCalculator
from nomina_engine.errors import ErrorDetail, InvalidInputError, NotFoundError
from nomina_engine.models import Employee, PayrollPeriod, PayrollRecord, SocialBenefitCalculation
from nomina_engine.models.base import utcnow
from nomina_engine.services.state_machine import PeriodStatus

logger = logging.getLogger(__name__)

# Severance first: interest reads the stored severance
PROVISION_ORDER = (
    BenefitType.SEVERANCE,
    BenefitType.SEVERANCE_INTEREST,
    BenefitType.SERVICE_BONUS,
    BenefitType.VACATION,
)


@dataclass
class ProvisionResult:
    """Accruals stored for a closed period."""

    period_id: UUID
    provisions: list[SocialBenefitCalculation] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)

    @property
    def employee_count(self) -> int:
        return len({p.employee_id for p in self.provisions})


class SocialBenefitService:
    """Computes benefit accruals for an employee and upserts them.

    Severance interest reads the stored severance for the exact same range,
    so severance must be calculated and stored first.
    """

    def __init__(self, session: AsyncSession, calculator: SocialBenefitCalculator | None = None):
        self.session = session
        self.calculator = calculator or SocialBenefitCalculator()

    async def preview(
        self,
        employee_id: UUID,
        benefit_type: BenefitType | str,
        period_start: date,
        period_end: date,
        reference_date: date | None = None,
        transport_subsidy: Decimal | None = None,
    ) -> BenefitAccrual:
        """Compute without persisting."""
        employee = await self._get_employee(employee_id)
        benefit_type = self._parse_type(benefit_type)

        severance_amount = None
        if benefit_type == BenefitType.SEVERANCE_INTEREST:
            stored = await self.get_stored(employee_id, BenefitType.SEVERANCE, period_start, period_end)
            severance_amount = stored.amount if stored else None

        return self.calculator.calculate(
            benefit_type,
            Decimal(employee.base_salary),
            transport_subsidy,
            period_start,
            period_end,
            reference_date or period_end,
            severance_amount=severance_amount,
        )

    async def calculate_and_store(
        self,
        employee_id: UUID,
        benefit_type: BenefitType | str,
        period_start: date,
        period_end: date,
        reference_date: date | None = None,
        transport_subsidy: Decimal | None = None,
    ) -> SocialBenefitCalculation:
        """Compute and upsert by (employee, benefit type, start, end)."""
        accrual = await self.preview(
            employee_id,
            benefit_type,
            period_start,
            period_end,
            reference_date=reference_date,
            transport_subsidy=transport_subsidy,
        )
        employee = await self._get_employee(employee_id)

        row = await self.get_stored(employee_id, accrual.benefit_type, period_start, period_end)
        if row is None:
            row = SocialBenefitCalculation(
                company_id=employee.company_id,
                employee_id=employee_id,
                benefit_type=accrual.benefit_type.value,
                period_start=period_start,
                period_end=period_end,
            )
            self.session.add(row)

        row.amount = accrual.amount
        row.monthly_salary = accrual.monthly_salary
        row.monthly_subsidy = accrual.monthly_subsidy
        row.day_count = accrual.day_count
        row.basis_json = accrual.basis()
        row.calculated_at = utcnow()
        await self.session.flush()

        logger.info(
            "Stored %s of %s for employee %s (%s - %s)",
            accrual.benefit_type.value,
            accrual.amount,
            employee_id,
            period_start,
            period_end,
        )
        return row

    async def get_stored(
        self,
        employee_id: UUID,
        benefit_type: BenefitType | str,
        period_start: date,
        period_end: date,
    ) -> SocialBenefitCalculation | None:
        result = await self.session.execute(
            select(SocialBenefitCalculation).where(
                SocialBenefitCalculation.employee_id == employee_id,
                SocialBenefitCalculation.benefit_type == BenefitType(benefit_type).value,
                SocialBenefitCalculation.period_start == period_start,
                SocialBenefitCalculation.period_end == period_end,
            )
        )
        return result.scalar_one_or_none()

    async def _get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError(f"Employee {employee_id} not found")
        return employee

    @staticmethod
    def _parse_type(benefit_type: BenefitType | str) -> BenefitType:
        try:
            return BenefitType(benefit_type)
        except ValueError:
            raise InvalidInputError(
                [ErrorDetail(f"unknown benefit type '{benefit_type}'", field="benefit_type", code="unknown_type")]
            ) from None

    async def provision_period(self, period_id: UUID) -> ProvisionResult:
        """Accrue and store every benefit for each employee of a closed period.

        Uses the period's date range and each finalized record's employee.
        Records with no worked days are skipped. Re-running updates the
        stored rows in place.

        Raises:
            NotFoundError: Unknown period
            InvalidInputError: Period is not closed
        """
        period = await self.session.get(PayrollPeriod, period_id, populate_existing=True)
        if period is None:
            raise NotFoundError(f"Payroll period {period_id} not found")
        if period.status != PeriodStatus.CLOSED:
            raise InvalidInputError(
                [
                    ErrorDetail(
                        f"period is '{period.status}'; provisions need a closed period",
                        field="status",
                        code="period_not_closed",
                    )
                ]
            )

        records = (
            await self.session.execute(
                select(PayrollRecord)
                .where(
                    PayrollRecord.period_id == period_id,
                    PayrollRecord.is_finalized.is_(True),
                )
                .order_by(PayrollRecord.employee_id)
            )
        ).scalars()

        result = ProvisionResult(period_id=period_id)
        for record in records:
            if Decimal(record.worked_days) <= 0:
                logger.info("Skipping provisions for employee %s: no worked days", record.employee_id)
                result.skipped.append(record.employee_id)
                continue
            for benefit_type in PROVISION_ORDER:
                result.provisions.append(
                    await self.calculate_and_store(
                        record.employee_id,
                        benefit_type,
                        period.start_date,
                        period.end_date,
                        reference_date=period.end_date,
                    )
                )

        logger.info(
            "Provisioned %d benefit(s) for %d employee(s) of period %s",
            len(result.provisions),
            result.employee_count,
            period_id,
        )
        return result
