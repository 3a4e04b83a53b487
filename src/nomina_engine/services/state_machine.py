"""Payroll period state machine with transition validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from nomina_engine.errors import InvalidStateTransitionError


class PeriodStatus(str, Enum):
    """Payroll period status values."""

    DRAFT = "draft"
    CLOSED = "closed"
    REOPENED = "reopened"


class PeriodStateMachine:
    """State machine for payroll period status transitions.

    Allowed transitions:
    - draft → closed (closure coordinator only)
    - closed → reopened (explicit, audited reopen)
    - reopened → closed (closure coordinator, full recalculation)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PeriodStatus.DRAFT: [PeriodStatus.CLOSED],
        PeriodStatus.CLOSED: [PeriodStatus.REOPENED],
        PeriodStatus.REOPENED: [PeriodStatus.CLOSED],
    }

    # Statuses where records and adjustments may change
    EDITABLE = {
        PeriodStatus.DRAFT,
        PeriodStatus.REOPENED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidStateTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(from_status, to_status)

    @classmethod
    def is_editable(cls, status: str) -> bool:
        """Check if calculation and adjustment edits are allowed in this status."""
        return status in cls.EDITABLE


@dataclass(frozen=True)
class GhostAssessment:
    """Advisory ghost-period classification; not a lifecycle state."""

    is_ghost: bool
    reasons: list[str] = field(default_factory=list)


def classify_ghost(
    status: str,
    employee_count: int,
    last_activity_at: datetime | None,
    now: datetime,
    staleness_days: int,
) -> GhostAssessment:
    """Flag a draft period with no employees or no recent activity."""
    if status != PeriodStatus.DRAFT:
        return GhostAssessment(is_ghost=False)

    reasons = []
    if employee_count == 0:
        reasons.append("no employees")
    if last_activity_at is not None:
        if last_activity_at.tzinfo is None:
            last_activity_at = last_activity_at.replace(tzinfo=timezone.utc)
        if now - last_activity_at > timedelta(days=staleness_days):
            reasons.append(f"no activity for more than {staleness_days} days")
    return GhostAssessment(is_ghost=bool(reasons), reasons=reasons)
