"""Transactional closure coordinator for payroll periods.

Closure runs five gated steps:

1. Pre-validation: state, selected employees, valid calculations, integrity
2. Snapshot of the period's persisted state
3. Atomic commit: recompute totals from records, conditional period update,
   finalize records, store a version snapshot
4. On any failure in 3: restore the snapshot under a bounded retry policy;
   a failed restore surfaces CriticalInconsistencyError
5. Post-verification of finalized records against persisted totals, plus a
   next-period suggestion

The whole orchestration runs under a timeout; exceeding it is a failure that
triggers the same rollback path.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import RetryError

from nomina_engine.config import Settings, get_settings
from nomina_engine.errors import (
    ClosureTimeoutError,
    ConcurrentModificationError,
    CriticalInconsistencyError,
    ErrorDetail,
    ValidationFailedError,
)
from nomina_engine.models import (
    Adjustment,
    Employee,
    PayrollPeriod,
    PayrollPeriodVersion,
    PayrollRecord,
)
from nomina_engine.models.base import utcnow
from nomina_engine.services.period_service import (
    NextPeriodSuggestion,
    PeriodService,
    suggest_next_period,
)
from nomina_engine.services.retry import RetryPolicy
from nomina_engine.services.state_machine import PeriodStateMachine, PeriodStatus

logger = logging.getLogger(__name__)


def _normalize_timestamp(value: datetime | None) -> datetime | None:
    """Aware UTC, so values read back from any backend compare equal."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Record columns kept in a version snapshot
RECORD_SNAPSHOT_FIELDS = (
    "base_salary",
    "worked_days",
    "regular_pay",
    "overtime_pay",
    "bonuses",
    "disability_pay",
    "transport_subsidy",
    "gross_pay",
    "ibc",
    "health_deduction",
    "pension_deduction",
    "solidarity_fund",
    "other_deductions",
    "total_deductions",
    "net_pay",
    "employer_contributions",
    "total_payroll_cost",
)


def _json_value(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    return value


def record_snapshot(record: PayrollRecord) -> dict[str, Any]:
    data = {name: _json_value(getattr(record, name)) for name in RECORD_SNAPSHOT_FIELDS}
    data["employee_id"] = str(record.employee_id)
    data["calculation_id"] = _json_value(record.calculation_id)
    return data


def adjustment_snapshot(adjustment: Adjustment) -> dict[str, Any]:
    return {
        "adjustment_id": str(adjustment.adjustment_id),
        "employee_id": str(adjustment.employee_id),
        "adjustment_type": adjustment.adjustment_type,
        "subtype": adjustment.subtype,
        "value": _json_value(adjustment.value),
        "hours": _json_value(adjustment.hours),
        "days": _json_value(adjustment.days),
        "constitutive": adjustment.constitutive,
        "notes": adjustment.notes,
    }


@dataclass(frozen=True)
class PeriodSnapshot:
    """Persisted period state captured before the atomic commit."""

    period_id: UUID
    status: str
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    employee_count: int
    version: int
    closed_at: datetime | None
    last_activity_at: datetime | None
    finalized_record_ids: frozenset[UUID] = frozenset()

    @classmethod
    def capture(
        cls,
        period: PayrollPeriod,
        finalized_record_ids: Iterable[UUID] = (),
    ) -> PeriodSnapshot:
        return cls(
            period_id=period.period_id,
            status=period.status,
            total_gross=Decimal(period.total_gross),
            total_deductions=Decimal(period.total_deductions),
            total_net=Decimal(period.total_net),
            employee_count=period.employee_count,
            version=period.version,
            closed_at=_normalize_timestamp(period.closed_at),
            last_activity_at=_normalize_timestamp(period.last_activity_at),
            finalized_record_ids=frozenset(finalized_record_ids),
        )

    def column_values(self) -> dict[str, Any]:
        """Period column values that restore this snapshot."""
        return {
            "status": self.status,
            "total_gross": self.total_gross,
            "total_deductions": self.total_deductions,
            "total_net": self.total_net,
            "employee_count": self.employee_count,
            "version": self.version,
            "closed_at": self.closed_at,
            "last_activity_at": self.last_activity_at,
        }


@dataclass(frozen=True)
class PeriodTotals:
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    employee_count: int


@dataclass
class VerificationReport:
    """Finalized records compared against persisted period totals."""

    consistent: bool
    mismatches: list[str] = field(default_factory=list)


@dataclass
class ClosureResult:
    """Outcome of a successful closure."""

    period_id: UUID
    transaction_id: str
    status: str
    totals: PeriodTotals
    verification: VerificationReport
    next_period: NextPeriodSuggestion
    closed_at: datetime
    duration_ms: int
    rollback_executed: bool = False


def new_transaction_id() -> str:
    return f"closure_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class ClosureCoordinator:
    """Closes payroll periods atomically.

    Only one closure per period can succeed: the period update is
    conditioned on the snapshot's (status, version), so a concurrent closure
    or reopen makes this one fail with ConcurrentModificationError. Unrelated
    periods never contend.
    """

    def __init__(
        self,
        session: AsyncSession,
        period_service: PeriodService | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.period_service = period_service or PeriodService(session, settings=self.settings)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.rollback_max_attempts,
            backoff_seconds=self.settings.rollback_backoff_seconds,
        )
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else self.settings.closure_timeout_seconds
        )

    async def close(
        self,
        period_id: UUID,
        employee_ids: Iterable[UUID],
        actor_id: str | None = None,
        restored_from: int | None = None,
    ) -> ClosureResult:
        """Close (or re-close) a period for the selected employees.

        ``restored_from`` marks the stored version as a restore of that
        earlier version number.

        Raises:
            InvalidStateTransitionError: Period is already closed
            ValidationFailedError: Preconditions not met, nothing written
            ConcurrentModificationError: Period changed underneath us, or the
                database aborted the commit (snapshot restored)
            ClosureTimeoutError: Time budget exceeded, snapshot restored
            CriticalInconsistencyError: Snapshot could not be restored
        """
        transaction_id = new_transaction_id()
        selected = list(dict.fromkeys(employee_ids))
        started = time.monotonic()
        logger.info(
            "Closure %s started for period %s with %d employee(s)",
            transaction_id,
            period_id,
            len(selected),
        )

        period = await self.period_service.get_period(period_id)
        from_status = period.status
        PeriodStateMachine.validate_transition(from_status, PeriodStatus.CLOSED)

        state: dict[str, PeriodSnapshot] = {}
        try:
            totals, closed_at = await asyncio.wait_for(
                self._validate_and_commit(
                    period, selected, transaction_id, actor_id, restored_from, state
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Closure %s timed out after %.1fs; rolling back",
                transaction_id,
                self.timeout_seconds,
            )
            rolled_back = False
            if "snapshot" in state:
                await self._rollback(state["snapshot"], transaction_id)
                rolled_back = True
            raise ClosureTimeoutError(
                f"Closure of period {period_id} exceeded {self.timeout_seconds}s",
                [ErrorDetail("closure timed out", field="period_id", code="timeout")],
                rollback_executed=rolled_back,
            ) from None

        verification = await self.verify(period_id)
        next_period = suggest_next_period(period.period_type, period.end_date)
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Closure %s committed period %s: gross=%s net=%s employees=%d (%dms)",
            transaction_id,
            period_id,
            totals.total_gross,
            totals.total_net,
            totals.employee_count,
            duration_ms,
        )
        return ClosureResult(
            period_id=period_id,
            transaction_id=transaction_id,
            status=PeriodStatus.CLOSED.value,
            totals=totals,
            verification=verification,
            next_period=next_period,
            closed_at=closed_at,
            duration_ms=duration_ms,
        )

    async def _validate_and_commit(
        self,
        period: PayrollPeriod,
        employee_ids: list[UUID],
        transaction_id: str,
        actor_id: str | None,
        restored_from: int | None,
        state: dict[str, PeriodSnapshot],
    ) -> tuple[PeriodTotals, datetime]:
        await self.validate(period, employee_ids)

        snapshot = await self._capture_snapshot(period)
        state["snapshot"] = snapshot

        try:
            return await self._atomic_commit(
                period, employee_ids, snapshot, transaction_id, actor_id, restored_from
            )
        except ConcurrentModificationError:
            # Conditional update matched nothing, so none of our writes landed
            logger.warning("Closure %s lost a concurrent modification race", transaction_id)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Closure %s aborted by the database; rolling back", transaction_id)
            await self._rollback(snapshot, transaction_id)
            raise ConcurrentModificationError(
                f"Closure of period {period.period_id} was aborted by the database "
                f"and rolled back: {exc}",
                [
                    ErrorDetail(
                        "commit aborted by the database",
                        field="period_id",
                        code="commit_aborted",
                    )
                ],
                rollback_executed=True,
            ) from exc
        except Exception:
            logger.exception("Closure %s failed during commit; rolling back", transaction_id)
            await self._rollback(snapshot, transaction_id)
            raise

    # === Step 1: pre-validation ===

    async def validate(
        self, period: PayrollPeriod, employee_ids: list[UUID]
    ) -> dict[UUID, PayrollRecord]:
        """Check every closure precondition, collecting all failures.

        Raises:
            ValidationFailedError: Listing every violated precondition
        """
        errors: list[ErrorDetail] = []

        if not PeriodStateMachine.is_editable(period.status):
            errors.append(
                ErrorDetail(
                    f"period is '{period.status}', expected draft or reopened",
                    field="status",
                    code="not_editable",
                )
            )

        if not employee_ids:
            errors.append(
                ErrorDetail("no employees selected for closure", field="employee_ids", code="empty")
            )

        records = await self.period_service.load_records(period.period_id, employee_ids)
        known_employees = set(
            (
                await self.session.execute(
                    select(Employee.employee_id).where(Employee.employee_id.in_(employee_ids))
                )
            ).scalars()
        )

        for employee_id in employee_ids:
            if employee_id not in known_employees:
                errors.append(
                    ErrorDetail(
                        "employee does not exist",
                        field="employee_id",
                        employee_id=employee_id,
                        code="unknown_employee",
                    )
                )
                continue
            record = records.get(employee_id)
            if record is None:
                errors.append(
                    ErrorDetail(
                        "employee has no calculation for this period",
                        field="payroll_record",
                        employee_id=employee_id,
                        code="not_calculated",
                    )
                )
                continue
            if record.status != "valid":
                errors.append(
                    ErrorDetail(
                        f"calculation status is '{record.status}', expected 'valid'",
                        field="payroll_record.status",
                        employee_id=employee_id,
                        code="invalid_calculation",
                    )
                )
            if record.base_salary is None or Decimal(record.base_salary) <= 0:
                errors.append(
                    ErrorDetail(
                        "record references a non-positive base salary",
                        field="payroll_record.base_salary",
                        employee_id=employee_id,
                        code="integrity",
                    )
                )

        # Re-closing recalculates every record inside the commit
        if period.status == PeriodStatus.REOPENED:
            errors.extend(
                await self.period_service.check_recalculation(
                    period, [e for e in employee_ids if e in records]
                )
            )

        if errors:
            logger.warning(
                "Closure validation failed for period %s: %d error(s)",
                period.period_id,
                len(errors),
            )
            raise ValidationFailedError(errors)

        return records

    # === Step 2: snapshot ===

    async def _capture_snapshot(self, period: PayrollPeriod) -> PeriodSnapshot:
        await self.session.refresh(period)
        finalized = (
            await self.session.execute(
                select(PayrollRecord.record_id).where(
                    PayrollRecord.period_id == period.period_id,
                    PayrollRecord.is_finalized.is_(True),
                )
            )
        ).scalars()
        return PeriodSnapshot.capture(period, finalized)

    # === Step 3: atomic commit ===

    async def _atomic_commit(
        self,
        period: PayrollPeriod,
        employee_ids: list[UUID],
        snapshot: PeriodSnapshot,
        transaction_id: str,
        actor_id: str | None,
        restored_from: int | None = None,
    ) -> tuple[PeriodTotals, datetime]:
        async with self.session.begin_nested():
            if snapshot.status == PeriodStatus.REOPENED:
                await self.period_service.recalculate_records(period, employee_ids)

            totals = await self._sum_records(period.period_id, employee_ids, finalized_only=False)
            closed_at = utcnow()

            result = await self.session.execute(
                update(PayrollPeriod)
                .where(
                    PayrollPeriod.period_id == period.period_id,
                    PayrollPeriod.status == snapshot.status,
                    PayrollPeriod.version == snapshot.version,
                )
                .values(
                    status=PeriodStatus.CLOSED.value,
                    total_gross=totals.total_gross,
                    total_deductions=totals.total_deductions,
                    total_net=totals.total_net,
                    employee_count=totals.employee_count,
                    version=PayrollPeriod.version + 1,
                    closed_at=closed_at,
                    last_activity_at=closed_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConcurrentModificationError(
                    f"Period {period.period_id} changed during closure",
                    [
                        ErrorDetail(
                            f"expected status '{snapshot.status}' at version {snapshot.version}",
                            field="version",
                            code="stale_version",
                        )
                    ],
                )

            await self._finalize_records(period.period_id, employee_ids, closed_at)
            version = await self._store_version(
                period.period_id,
                employee_ids,
                snapshot,
                totals,
                transaction_id,
                actor_id,
                restored_from,
            )

            action = "reclosed" if snapshot.status == PeriodStatus.REOPENED else "closed"
            await self.period_service.record_audit(
                period.period_id,
                action,
                actor_id=actor_id,
                details={
                    "transaction_id": transaction_id,
                    "total_gross": str(totals.total_gross),
                    "total_deductions": str(totals.total_deductions),
                    "total_net": str(totals.total_net),
                    "employee_count": totals.employee_count,
                    "version_number": version.version_number,
                },
            )

        await self.session.refresh(period)
        return totals, closed_at

    async def _store_version(
        self,
        period_id: UUID,
        employee_ids: list[UUID],
        snapshot: PeriodSnapshot,
        totals: PeriodTotals,
        transaction_id: str,
        actor_id: str | None,
        restored_from: int | None,
    ) -> PayrollPeriodVersion:
        records = (
            await self.session.execute(
                select(PayrollRecord)
                .where(
                    PayrollRecord.period_id == period_id,
                    PayrollRecord.employee_id.in_(employee_ids),
                )
                .order_by(PayrollRecord.employee_id)
                .execution_options(populate_existing=True)
            )
        ).scalars()
        adjustments = (
            await self.session.execute(
                select(Adjustment)
                .where(
                    Adjustment.period_id == period_id,
                    Adjustment.employee_id.in_(employee_ids),
                )
                .order_by(Adjustment.created_at, Adjustment.adjustment_id)
            )
        ).scalars()

        if restored_from is not None:
            version_type = "restore"
        elif snapshot.status == PeriodStatus.REOPENED:
            version_type = "reclose"
        else:
            version_type = "initial"

        version = PayrollPeriodVersion(
            period_id=period_id,
            version_number=snapshot.version + 1,
            version_type=version_type,
            transaction_id=transaction_id,
            restored_from=restored_from,
            actor_id=actor_id,
            total_gross=totals.total_gross,
            total_deductions=totals.total_deductions,
            total_net=totals.total_net,
            employee_count=totals.employee_count,
            snapshot_json={
                "records": [record_snapshot(r) for r in records],
                "adjustments": [adjustment_snapshot(a) for a in adjustments],
            },
        )
        self.session.add(version)
        await self.session.flush()
        return version

    async def _finalize_records(
        self, period_id: UUID, employee_ids: list[UUID], finalized_at: datetime
    ) -> None:
        await self.session.execute(
            update(PayrollRecord)
            .where(
                PayrollRecord.period_id == period_id,
                PayrollRecord.employee_id.in_(employee_ids),
            )
            .values(is_finalized=True, finalized_at=finalized_at)
            .execution_options(synchronize_session=False)
        )

    async def _sum_records(
        self,
        period_id: UUID,
        employee_ids: list[UUID] | None = None,
        finalized_only: bool = True,
    ) -> PeriodTotals:
        query = select(
            func.coalesce(func.sum(PayrollRecord.gross_pay), 0),
            func.coalesce(func.sum(PayrollRecord.total_deductions), 0),
            func.coalesce(func.sum(PayrollRecord.net_pay), 0),
            func.count(PayrollRecord.record_id),
        ).where(PayrollRecord.period_id == period_id)
        if employee_ids is not None:
            query = query.where(PayrollRecord.employee_id.in_(employee_ids))
        if finalized_only:
            query = query.where(PayrollRecord.is_finalized.is_(True))

        gross, deductions, net, count = (await self.session.execute(query)).one()
        return PeriodTotals(
            total_gross=Decimal(str(gross)),
            total_deductions=Decimal(str(deductions)),
            total_net=Decimal(str(net)),
            employee_count=int(count),
        )

    # === Step 4: rollback ===

    async def _restore_snapshot(self, snapshot: PeriodSnapshot) -> None:
        """Write the snapshot back. Safe to repeat."""
        await self.session.execute(
            update(PayrollPeriod)
            .where(PayrollPeriod.period_id == snapshot.period_id)
            .values(**snapshot.column_values())
            .execution_options(synchronize_session=False)
        )
        unfinalize = update(PayrollRecord).where(PayrollRecord.period_id == snapshot.period_id)
        if snapshot.finalized_record_ids:
            unfinalize = unfinalize.where(
                PayrollRecord.record_id.not_in(snapshot.finalized_record_ids)
            )
        await self.session.execute(
            unfinalize.values(is_finalized=False, finalized_at=None).execution_options(
                synchronize_session=False
            )
        )
        await self.session.flush()

    async def _rollback(self, snapshot: PeriodSnapshot, transaction_id: str) -> None:
        try:
            await self.retry_policy.run(
                lambda: self._restore_snapshot(snapshot),
                description=f"Rollback of closure {transaction_id}",
            )
        except RetryError as exc:
            attempts = exc.last_attempt.attempt_number
            last_error = exc.last_attempt.exception()
            logger.critical(
                "Closure %s rollback failed after %d attempt(s); period %s needs manual repair: %s",
                transaction_id,
                attempts,
                snapshot.period_id,
                last_error,
            )
            raise CriticalInconsistencyError(
                f"Rollback of closure {transaction_id} failed after {attempts} attempt(s); "
                f"period {snapshot.period_id} requires manual intervention",
                cause=last_error,
                details=[
                    ErrorDetail(
                        "snapshot restore failed",
                        field="period_id",
                        code="rollback_failed",
                    )
                ],
            ) from exc
        logger.warning("Closure %s rolled back period %s", transaction_id, snapshot.period_id)

    # === Step 5: verification ===

    async def verify(self, period_id: UUID) -> VerificationReport:
        """Compare finalized records with the persisted period totals."""
        period = await self.period_service.get_period(period_id)
        totals = await self._sum_records(period_id, finalized_only=True)

        mismatches = []
        for name in ("total_gross", "total_deductions", "total_net"):
            persisted = Decimal(getattr(period, name))
            summed = getattr(totals, name)
            if persisted != summed:
                mismatches.append(f"{name}: period={persisted} records={summed}")
        if period.employee_count != totals.employee_count:
            mismatches.append(
                f"employee_count: period={period.employee_count} records={totals.employee_count}"
            )

        if mismatches:
            logger.error(
                "Post-closure verification failed for period %s: %s",
                period_id,
                "; ".join(mismatches),
            )
        return VerificationReport(consistent=not mismatches, mismatches=mismatches)
