"""Period version history: listing, comparison and restore.

Every closure stores a :class:`PayrollPeriodVersion` holding the finalized
records and the adjustments they were computed from. Two versions of the
same period can be compared employee by employee, and a reopened period can
be put back to an earlier version's adjustments and worked days, then
re-closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nomina_engine.errors import (
    ErrorDetail,
    InvalidInputError,
    InvalidStateTransitionError,
    NotFoundError,
)
from nomina_engine.models import Adjustment, PayrollPeriodVersion
from nomina_engine.services.closure_service import ClosureCoordinator, ClosureResult
from nomina_engine.services.period_service import PeriodService
from nomina_engine.services.state_machine import PeriodStatus

logger = logging.getLogger(__name__)

# Record fields compared between versions
COMPARED_FIELDS = ("base_salary", "worked_days", "gross_pay", "total_deductions", "net_pay")

ADJUSTMENT_AMOUNT_FIELDS = ("value", "hours", "days")


def _decimal(value: Any) -> Decimal:
    return Decimal(value) if value is not None else Decimal("0")


@dataclass(frozen=True)
class FieldChange:
    field: str
    before: Decimal
    after: Decimal

    @property
    def difference(self) -> Decimal:
        return self.after - self.before


@dataclass(frozen=True)
class AdjustmentVersionChange:
    adjustment_id: UUID
    action: str  # added, removed, modified
    adjustment_type: str
    subtype: str | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None

    @property
    def value_difference(self) -> Decimal:
        before = _decimal(self.before.get("value")) if self.before else Decimal("0")
        after = _decimal(self.after.get("value")) if self.after else Decimal("0")
        return after - before


@dataclass
class EmployeeVersionChange:
    employee_id: UUID
    change_type: str
    field_changes: list[FieldChange] = field(default_factory=list)
    adjustment_changes: list[AdjustmentVersionChange] = field(default_factory=list)
    impact: Decimal = Decimal("0")


@dataclass
class VersionComparison:
    """Employee-level differences between two versions of one period.

    ``impact`` is the change in net pay; employees without differences are
    left out.
    """

    period_id: UUID
    from_version: int
    to_version: int
    employees: list[EmployeeVersionChange]
    employees_before: int
    employees_after: int

    @property
    def total_impact(self) -> Decimal:
        return sum((e.impact for e in self.employees), Decimal("0"))

    def count_adjustments(self, action: str) -> int:
        return sum(
            1 for e in self.employees for c in e.adjustment_changes if c.action == action
        )


def compare_snapshots(
    before: dict[str, Any], after: dict[str, Any]
) -> list[EmployeeVersionChange]:
    """Diff two version snapshots employee by employee."""
    records_before = {r["employee_id"]: r for r in before.get("records", [])}
    records_after = {r["employee_id"]: r for r in after.get("records", [])}
    adjustments_before: dict[str, dict[str, dict[str, Any]]] = {}
    for a in before.get("adjustments", []):
        adjustments_before.setdefault(a["employee_id"], {})[a["adjustment_id"]] = a
    adjustments_after: dict[str, dict[str, dict[str, Any]]] = {}
    for a in after.get("adjustments", []):
        adjustments_after.setdefault(a["employee_id"], {})[a["adjustment_id"]] = a

    employee_ids = sorted(
        set(records_before) | set(records_after) | set(adjustments_before) | set(adjustments_after)
    )
    changes = []
    for employee_id in employee_ids:
        old = records_before.get(employee_id)
        new = records_after.get(employee_id)
        adjustment_changes = _compare_adjustments(
            adjustments_before.get(employee_id, {}), adjustments_after.get(employee_id, {})
        )

        field_changes: list[FieldChange] = []
        if old is None and new is not None:
            change_type = "employee_added"
            impact = _decimal(new["net_pay"])
        elif old is not None and new is None:
            change_type = "employee_removed"
            impact = -_decimal(old["net_pay"])
        else:
            old = old or {}
            new = new or {}
            field_changes = [
                FieldChange(name, _decimal(old.get(name)), _decimal(new.get(name)))
                for name in COMPARED_FIELDS
                if _decimal(old.get(name)) != _decimal(new.get(name))
            ]
            impact = _decimal(new.get("net_pay")) - _decimal(old.get("net_pay"))
            actions = {c.action for c in adjustment_changes}
            if field_changes:
                change_type = "values_modified"
            elif "added" in actions:
                change_type = "adjustments_added"
            elif "removed" in actions:
                change_type = "adjustments_removed"
            elif "modified" in actions:
                change_type = "adjustments_modified"
            else:
                continue

        changes.append(
            EmployeeVersionChange(
                employee_id=UUID(employee_id),
                change_type=change_type,
                field_changes=field_changes,
                adjustment_changes=adjustment_changes,
                impact=impact,
            )
        )
    return changes


def _compare_adjustments(
    before: dict[str, dict[str, Any]], after: dict[str, dict[str, Any]]
) -> list[AdjustmentVersionChange]:
    changes = []
    for adjustment_id in sorted(set(before) | set(after)):
        old = before.get(adjustment_id)
        new = after.get(adjustment_id)
        if old is None:
            action = "added"
        elif new is None:
            action = "removed"
        elif any(_decimal(old.get(n)) != _decimal(new.get(n)) for n in ADJUSTMENT_AMOUNT_FIELDS) or (
            old["adjustment_type"] != new["adjustment_type"]
        ):
            action = "modified"
        else:
            continue
        current = new or old
        changes.append(
            AdjustmentVersionChange(
                adjustment_id=UUID(adjustment_id),
                action=action,
                adjustment_type=current["adjustment_type"],
                subtype=current.get("subtype"),
                before=old,
                after=new,
            )
        )
    return changes


class PeriodVersionService:
    """Reads and restores the versions stored at each closure."""

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

    async def list_versions(self, period_id: UUID) -> list[PayrollPeriodVersion]:
        await self.period_service.get_period(period_id)
        result = await self.session.execute(
            select(PayrollPeriodVersion)
            .where(PayrollPeriodVersion.period_id == period_id)
            .order_by(PayrollPeriodVersion.version_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def get_version(self, period_id: UUID, version_number: int) -> PayrollPeriodVersion:
        result = await self.session.execute(
            select(PayrollPeriodVersion).where(
                PayrollPeriodVersion.period_id == period_id,
                PayrollPeriodVersion.version_number == version_number,
            )
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise NotFoundError(f"Period {period_id} has no version {version_number}")
        return version

    async def compare(
        self,
        period_id: UUID,
        from_version: int | None = None,
        to_version: int | None = None,
    ) -> VersionComparison:
        """Compare two versions; defaults to the first and latest closures.

        Raises:
            NotFoundError: Period or a requested version does not exist
        """
        versions = await self.list_versions(period_id)
        if not versions:
            raise NotFoundError(f"Period {period_id} has never been closed")
        by_number = {v.version_number: v for v in versions}
        from_number = from_version if from_version is not None else versions[0].version_number
        to_number = to_version if to_version is not None else versions[-1].version_number
        for number in (from_number, to_number):
            if number not in by_number:
                raise NotFoundError(f"Period {period_id} has no version {number}")

        before = by_number[from_number]
        after = by_number[to_number]
        employees = compare_snapshots(before.snapshot_json, after.snapshot_json)
        logger.debug(
            "Compared period %s versions %d and %d: %d employee(s) changed",
            period_id,
            from_number,
            to_number,
            len(employees),
        )
        return VersionComparison(
            period_id=period_id,
            from_version=from_number,
            to_version=to_number,
            employees=employees,
            employees_before=before.employee_count,
            employees_after=after.employee_count,
        )

    async def restore_version(
        self,
        period_id: UUID,
        version_number: int,
        actor_id: str,
        justification: str,
    ) -> ClosureResult:
        """Put a reopened period back to a stored version and re-close it.

        The version's adjustments replace the current ones and its worked
        days are reapplied; pay is recomputed from current employee data on
        re-close. The new version records which version it restored.

        Raises:
            InvalidInputError: Missing actor or justification
            InvalidStateTransitionError: Period is not reopened
            NotFoundError: Unknown period or version
        """
        details = []
        if not actor_id or not actor_id.strip():
            details.append(ErrorDetail("actor is required to restore", field="actor_id", code="required"))
        if not justification or not justification.strip():
            details.append(
                ErrorDetail("justification is required to restore", field="justification", code="required")
            )
        if details:
            raise InvalidInputError(details)

        period = await self.period_service.get_period(period_id)
        if period.status != PeriodStatus.REOPENED:
            raise InvalidStateTransitionError(
                period.status,
                PeriodStatus.CLOSED.value,
                "a version can only be restored onto a reopened period",
            )
        version = await self.get_version(period_id, version_number)
        snapshot = version.snapshot_json
        employee_ids = [UUID(r["employee_id"]) for r in snapshot["records"]]
        worked_days = {UUID(r["employee_id"]): Decimal(r["worked_days"]) for r in snapshot["records"]}

        current = await self.period_service.load_adjustments(period_id)
        for adjustments in current.values():
            for adjustment in adjustments:
                await self.session.delete(adjustment)
        records = await self.period_service.load_records(period_id)
        for employee_id, record in records.items():
            if employee_id not in worked_days:
                await self.session.delete(record)
        await self.session.flush()

        for item in snapshot["adjustments"]:
            self.session.add(
                Adjustment(
                    period_id=period_id,
                    employee_id=UUID(item["employee_id"]),
                    adjustment_type=item["adjustment_type"],
                    subtype=item["subtype"],
                    value=Decimal(item["value"]) if item["value"] is not None else None,
                    hours=Decimal(item["hours"]) if item["hours"] is not None else None,
                    days=Decimal(item["days"]) if item["days"] is not None else None,
                    constitutive=item["constitutive"],
                    notes=item["notes"],
                )
            )
        await self.session.flush()

        await self.period_service.recalculate_records(period, employee_ids, worked_days=worked_days)
        await self.period_service.record_audit(
            period_id,
            "version_restored",
            actor_id=actor_id,
            justification=justification,
            details={
                "restored_from": version_number,
                "employees": len(employee_ids),
                "adjustments": len(snapshot["adjustments"]),
            },
        )
        logger.info(
            "Restoring period %s to version %d for %d employee(s)",
            period_id,
            version_number,
            len(employee_ids),
        )
        return await self.coordinator.close(
            period_id, employee_ids, actor_id=actor_id, restored_from=version_number
        )
