"""Error taxonomy shared by calculators, services and the API.

Every error carries a stable machine-readable ``kind`` plus a list of
structured details (which employee, which field, which precondition) so
callers can display it without digging through logs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class ErrorDetail:
    """One violated field or precondition."""

    message: str
    field: str | None = None
    employee_id: UUID | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.employee_id is not None:
            data["employee_id"] = str(self.employee_id)
        return data


class PayrollError(Exception):
    """Base class for all nomina engine errors."""

    kind = "PayrollError"

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        self.message = message
        self.details = list(details or [])
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": [d.to_dict() for d in self.details],
        }


class InvalidInputError(PayrollError):
    """Malformed or out-of-range request data for one employee."""

    kind = "InvalidInput"

    def __init__(
        self,
        details: list[ErrorDetail],
        employee_id: UUID | None = None,
    ):
        self.employee_id = employee_id
        summary = "; ".join(d.message for d in details) or "invalid input"
        prefix = f"Employee {employee_id}: " if employee_id else ""
        super().__init__(f"{prefix}{summary}", details)


class MissingDependencyError(PayrollError):
    """A required prior calculation is absent."""

    kind = "MissingDependency"


class UnsupportedPeriodicityError(PayrollError):
    """A date range whose shape the formulas do not recognize."""

    kind = "UnsupportedPeriodicity"

    def __init__(self, day_count: int):
        self.day_count = day_count
        super().__init__(
            f"Cannot infer periodicity from a {day_count}-day range",
            [ErrorDetail(message=f"{day_count} days", field="period", code="periodicity")],
        )


class NotFoundError(PayrollError):
    """Referenced entity does not exist."""

    kind = "NotFound"


class InvalidStateTransitionError(PayrollError):
    """Raised when an invalid period state transition is attempted."""

    kind = "InvalidStateTransition"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, [ErrorDetail(message=msg, field="status", code="transition")])


class DuplicatePeriodError(PayrollError):
    """An open period already covers an overlapping date range."""

    kind = "DuplicatePeriod"


class StaleAdjustmentSetError(PayrollError):
    """Adjustments changed between preview and apply."""

    kind = "StaleAdjustmentSet"


class ClosureError(PayrollError):
    """Base class for errors that abort a whole closure."""

    def __init__(
        self,
        message: str,
        details: list[ErrorDetail] | None = None,
        rollback_executed: bool = False,
    ):
        self.rollback_executed = rollback_executed
        super().__init__(message, details)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["rollback_executed"] = self.rollback_executed
        return data


class ValidationFailedError(ClosureError):
    """Closure preconditions not met; nothing was written."""

    kind = "ValidationFailed"

    def __init__(self, details: list[ErrorDetail]):
        super().__init__(
            f"Closure validation failed with {len(details)} error(s)",
            details,
            rollback_executed=False,
        )


class ConcurrentModificationError(ClosureError):
    """Period changed underneath the closure, or the database aborted the commit.

    When raised after writes began, the snapshot has already been restored
    and ``rollback_executed`` is True.
    """

    kind = "ConcurrentModification"


class ClosureTimeoutError(ClosureError):
    """Closure exceeded its time budget."""

    kind = "Timeout"


class CriticalInconsistencyError(ClosureError):
    """Rollback itself failed; manual intervention required."""

    kind = "CriticalInconsistency"

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        details: list[ErrorDetail] | None = None,
    ):
        self.cause = cause
        super().__init__(message, details, rollback_executed=False)


class PeriodLockedError(PayrollError):
    """Records or adjustments changed while the period is closed."""

    kind = "PeriodLocked"

    def __init__(self, period_id: UUID, status: str):
        self.period_id = period_id
        self.status = status
        super().__init__(
            f"Period {period_id} is '{status}' and cannot be modified",
            [ErrorDetail("period is not editable", field="status", code="not_editable")],
        )
