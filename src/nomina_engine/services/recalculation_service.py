"""Adjustment recalculation pipeline for reopened periods."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nomina_engine.calculators.types import AdjustmentInput, AdjustmentType, PayBreakdown, PeriodType
from nomina_engine.errors import (
    ErrorDetail,
    InvalidInputError,
    InvalidStateTransitionError,
    StaleAdjustmentSetError,
)
from nomina_engine.models import Adjustment, Employee, PayrollPeriod
from nomina_engine.services.closure_service import ClosureCoordinator, ClosureResult
from nomina_engine.services.period_service import PeriodService, adjustment_to_input
from nomina_engine.services.state_machine import PeriodStatus

logger = logging.getLogger(__name__)

# Breakdown fields shown in a preview diff
DIFF_FIELDS = (
    "regular_pay",
    "overtime_pay",
    "bonuses",
    "disability_pay",
    "transport_subsidy",
    "gross_pay",
    "ibc",
    "health_deduction",
    "pension_deduction",
    "total_deductions",
    "net_pay",
    "employer_contributions",
)

_KNOWN_TYPES = {t.value for t in AdjustmentType} | set(AdjustmentType)


class ChangeAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class AdjustmentChange:
    """One requested edit to an employee's novedades."""

    action: ChangeAction
    employee_id: UUID
    adjustment_id: UUID | None = None
    adjustment_type: AdjustmentType | None = None
    subtype: str | None = None
    value: Decimal | None = None
    hours: Decimal | None = None
    days: Decimal | None = None
    constitutive: bool | None = None
    notes: str | None = None


@dataclass
class EmployeePreview:
    """Old vs. new breakdown for one affected employee."""

    employee_id: UUID
    old: dict[str, Any] | None
    new: PayBreakdown
    differences: dict[str, tuple[str | None, str]] = field(default_factory=dict)


@dataclass
class RecalculationPreview:
    """Nothing here has been persisted.

    ``adjustment_versions`` records, per affected employee, the updated-at
    token of every adjustment the preview was computed from.
    """

    period_id: UUID
    employees: list[EmployeePreview]
    adjustment_versions: dict[UUID, dict[UUID, str]]


def _version_token(updated_at: datetime) -> str:
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return updated_at.astimezone(timezone.utc).isoformat()


class AdjustmentRecalculationPipeline:
    """Preview, apply and re-close adjustment changes on a reopened period."""

    def __init__(
        self,
        session: AsyncSession,
        period_service: PeriodService | None = None,
        coordinator: ClosureCoordinator | None = None,
    ):
        self.session = session
        self.period_service = period_service or PeriodService(session)
        self.coordinator = coordinator or ClosureCoordinator(
            session, period_service=self.period_service
        )

    async def reopen_apply_reclose(
        self,
        period_id: UUID,
        changes: list[AdjustmentChange],
        justification: str,
        actor_id: str | None = None,
    ) -> ClosureResult:
        """Preview then immediately apply and re-close."""
        preview = await self.preview(period_id, changes)
        return await self.apply(preview, changes, justification, actor_id=actor_id)

    async def preview(
        self, period_id: UUID, changes: list[AdjustmentChange]
    ) -> RecalculationPreview:
        """Recalculate affected employees with the changes applied in memory."""
        period = await self._get_reopened_period(period_id)
        affected = list(dict.fromkeys(c.employee_id for c in changes))
        if not affected:
            raise InvalidInputError(
                [ErrorDetail("at least one adjustment change is required", field="changes", code="empty")]
            )

        await self.session.flush()
        current = await self.period_service.load_adjustments(period_id, affected)
        self._validate_changes(changes, current)

        employees = await self._load_employees(period, affected)
        records = await self.period_service.load_records(period_id, affected)
        default_days = Decimal(PeriodType(period.period_type).max_days)

        previews = []
        for employee_id in affected:
            employee = employees[employee_id]
            inputs = self._apply_in_memory(
                current.get(employee_id, []),
                [c for c in changes if c.employee_id == employee_id],
            )
            record = records.get(employee_id)
            days = Decimal(record.worked_days) if record else default_days
            breakdown = self.period_service.calculate_employee(period, employee, days, inputs)
            old = record.breakdown_json if record else None
            previews.append(
                EmployeePreview(
                    employee_id=employee_id,
                    old=old,
                    new=breakdown,
                    differences=self._diff(old, breakdown),
                )
            )

        return RecalculationPreview(
            period_id=period_id,
            employees=previews,
            adjustment_versions=self._versions(current, affected),
        )

    async def apply(
        self,
        preview: RecalculationPreview,
        changes: list[AdjustmentChange],
        justification: str,
        actor_id: str | None = None,
    ) -> ClosureResult:
        """Persist the previewed changes and re-close the period.

        Raises:
            InvalidInputError: Missing justification
            StaleAdjustmentSetError: Adjustments changed since the preview
        """
        if not justification or not justification.strip():
            raise InvalidInputError(
                [ErrorDetail("justification is required", field="justification", code="required")]
            )
        unpreviewed = [
            (i, c.employee_id)
            for i, c in enumerate(changes)
            if c.employee_id not in preview.adjustment_versions
        ]
        if unpreviewed:
            raise InvalidInputError(
                [
                    ErrorDetail(
                        "change targets an employee that was not previewed",
                        field=f"changes[{i}].employee_id",
                        employee_id=employee_id,
                        code="not_previewed",
                    )
                    for i, employee_id in unpreviewed
                ]
            )
        period = await self._get_reopened_period(preview.period_id)
        affected = list(preview.adjustment_versions)

        await self.session.flush()
        current = await self.period_service.load_adjustments(period.period_id, affected)
        stale = [
            employee_id
            for employee_id, expected in preview.adjustment_versions.items()
            if self._versions(current, [employee_id])[employee_id] != expected
        ]
        if stale:
            logger.warning(
                "Stale adjustment set for period %s, employees %s",
                period.period_id,
                ", ".join(str(e) for e in stale),
            )
            raise StaleAdjustmentSetError(
                f"Adjustments changed since preview for {len(stale)} employee(s)",
                [
                    ErrorDetail(
                        "adjustments changed since preview",
                        field="adjustments",
                        employee_id=employee_id,
                        code="stale",
                    )
                    for employee_id in stale
                ],
            )

        self._validate_changes(changes, current)
        by_id = {a.adjustment_id: a for items in current.values() for a in items}
        for change in changes:
            await self._persist_change(period, change, by_id)
        await self.session.flush()

        await self.period_service.recalculate_records(period, affected)
        await self.period_service.record_audit(
            period.period_id,
            "adjustments_applied",
            actor_id=actor_id,
            justification=justification,
            details={
                "employees": [str(e) for e in affected],
                "changes": len(changes),
            },
        )

        records = await self.period_service.load_records(period.period_id)
        logger.info(
            "Applied %d adjustment change(s) to period %s; re-closing %d employee(s)",
            len(changes),
            period.period_id,
            len(records),
        )
        return await self.coordinator.close(period.period_id, list(records), actor_id=actor_id)

    # === Helpers ===

    async def _get_reopened_period(self, period_id: UUID) -> PayrollPeriod:
        period = await self.period_service.get_period(period_id)
        if period.status != PeriodStatus.REOPENED:
            raise InvalidStateTransitionError(
                period.status,
                PeriodStatus.CLOSED.value,
                "adjustments can only be recalculated on a reopened period",
            )
        return period

    async def _load_employees(
        self, period: PayrollPeriod, employee_ids: list[UUID]
    ) -> dict[UUID, Employee]:
        result = await self.session.execute(
            select(Employee).where(
                Employee.company_id == period.company_id,
                Employee.employee_id.in_(employee_ids),
            )
        )
        employees = {e.employee_id: e for e in result.scalars()}
        missing = [e for e in employee_ids if e not in employees]
        if missing:
            raise InvalidInputError(
                [
                    ErrorDetail("unknown employee", field="employee_id", employee_id=e, code="unknown_employee")
                    for e in missing
                ]
            )
        return employees

    @staticmethod
    def _versions(
        current: dict[UUID, list[Adjustment]], employee_ids: Iterable[UUID]
    ) -> dict[UUID, dict[UUID, str]]:
        return {
            employee_id: {
                a.adjustment_id: _version_token(a.updated_at) for a in current.get(employee_id, [])
            }
            for employee_id in employee_ids
        }

    @staticmethod
    def _validate_changes(
        changes: list[AdjustmentChange], current: dict[UUID, list[Adjustment]]
    ) -> None:
        details = []
        for i, change in enumerate(changes):
            ids = {a.adjustment_id for a in current.get(change.employee_id, [])}
            if change.adjustment_type is not None and change.adjustment_type not in _KNOWN_TYPES:
                details.append(
                    ErrorDetail(
                        f"unknown adjustment type '{change.adjustment_type}'",
                        field=f"changes[{i}].adjustment_type",
                        employee_id=change.employee_id,
                        code="unknown_type",
                    )
                )
            if change.action == ChangeAction.ADD:
                if change.adjustment_type is None:
                    details.append(
                        ErrorDetail(
                            "adjustment type is required to add",
                            field=f"changes[{i}].adjustment_type",
                            employee_id=change.employee_id,
                            code="required",
                        )
                    )
            elif change.adjustment_id not in ids:
                details.append(
                    ErrorDetail(
                        f"adjustment {change.adjustment_id} does not belong to this employee and period",
                        field=f"changes[{i}].adjustment_id",
                        employee_id=change.employee_id,
                        code="unknown_adjustment",
                    )
                )
        if details:
            raise InvalidInputError(details)

    @staticmethod
    def _apply_in_memory(
        adjustments: list[Adjustment], changes: list[AdjustmentChange]
    ) -> list[AdjustmentInput]:
        try:
            inputs = {a.adjustment_id: adjustment_to_input(a) for a in adjustments}
        except ValueError as exc:
            raise InvalidInputError(
                [ErrorDetail(str(exc), field="adjustment_type", code="unknown_type")]
            ) from None
        added: list[AdjustmentInput] = []
        for change in changes:
            if change.action == ChangeAction.REMOVE:
                inputs.pop(change.adjustment_id, None)
            elif change.action == ChangeAction.UPDATE:
                fields = {
                    name: getattr(change, name)
                    for name in ("subtype", "value", "hours", "days", "constitutive")
                    if getattr(change, name) is not None
                }
                if change.adjustment_type is not None:
                    fields["adjustment_type"] = AdjustmentType(change.adjustment_type)
                inputs[change.adjustment_id] = replace(inputs[change.adjustment_id], **fields)
            else:
                added.append(
                    AdjustmentInput(
                        adjustment_type=AdjustmentType(change.adjustment_type),
                        value=change.value,
                        hours=change.hours,
                        days=change.days,
                        subtype=change.subtype,
                        constitutive=change.constitutive,
                    )
                )
        return list(inputs.values()) + added

    async def _persist_change(
        self,
        period: PayrollPeriod,
        change: AdjustmentChange,
        by_id: dict[UUID, Adjustment],
    ) -> None:
        if change.action == ChangeAction.ADD:
            self.session.add(
                Adjustment(
                    period_id=period.period_id,
                    employee_id=change.employee_id,
                    adjustment_type=AdjustmentType(change.adjustment_type).value,
                    subtype=change.subtype,
                    value=change.value,
                    hours=change.hours,
                    days=change.days,
                    constitutive=change.constitutive,
                    notes=change.notes,
                )
            )
            return

        adjustment = by_id[change.adjustment_id]
        if change.action == ChangeAction.REMOVE:
            await self.session.delete(adjustment)
            return

        if change.adjustment_type is not None:
            adjustment.adjustment_type = AdjustmentType(change.adjustment_type).value
        for name in ("subtype", "value", "hours", "days", "constitutive", "notes"):
            new_value = getattr(change, name)
            if new_value is not None:
                setattr(adjustment, name, new_value)

    @staticmethod
    def _diff(old: dict[str, Any] | None, new: PayBreakdown) -> dict[str, tuple[str | None, str]]:
        differences = {}
        for name in DIFF_FIELDS:
            after = getattr(new, name)
            before = old.get(name) if old else None
            if before is None or Decimal(before) != after:
                differences[name] = (before, str(after))
        return differences
