"""Payroll period, record, adjustment, audit and version models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nomina_engine.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from nomina_engine.models.company import Company
    from nomina_engine.models.employee import Employee

MONEY = Numeric(14, 2)


# ===== Periods =====


class PayrollPeriod(Base, TimestampMixin):
    """Date range over which one round of payroll is computed and closed.

    ``status`` is only changed by the state machine paths (closure
    coordinator and audited reopen); every such write is conditioned on
    (status, version) and bumps ``version``.
    """

    __tablename__ = "payroll_period"

    period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    # Aggregates, finalized at closure
    total_gross: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_net: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopened_by: Mapped[str | None] = mapped_column(String, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "start_date", "end_date", name="payroll_period_range_unique"),
        CheckConstraint("end_date >= start_date", name="payroll_period_dates_check"),
        CheckConstraint(
            "period_type IN ('weekly', 'biweekly', 'monthly')",
            name="payroll_period_type_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'closed', 'reopened')",
            name="payroll_period_status_check",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="periods")
    records: Mapped[list[PayrollRecord]] = relationship(back_populates="period")
    adjustments: Mapped[list[Adjustment]] = relationship(back_populates="period")
    audit_events: Mapped[list[PeriodAuditEvent]] = relationship(back_populates="period")
    versions: Mapped[list[PayrollPeriodVersion]] = relationship(back_populates="period")


# ===== Records =====


class PayrollRecord(Base, TimestampMixin):
    """One employee's computed breakdown for one period."""

    __tablename__ = "payroll_record"

    record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)

    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    worked_days: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    regular_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    overtime_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    bonuses: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    disability_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    transport_subsidy: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    ibc: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    health_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    pension_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    solidarity_fund: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    other_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    employer_contributions: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    total_payroll_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    calculation_id: Mapped[UUID | None] = mapped_column(nullable=True)
    breakdown_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    errors_json: Mapped[list[dict[str, Any]] | None] = mapped_column(nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("period_id", "employee_id", name="payroll_record_period_employee_unique"),
        CheckConstraint(
            "status IN ('pending', 'valid', 'error')",
            name="payroll_record_status_check",
        ),
    )

    # Relationships
    period: Mapped[PayrollPeriod] = relationship(back_populates="records")
    employee: Mapped[Employee] = relationship()


# ===== Adjustments (novedades) =====


class Adjustment(Base, TimestampMixin):
    """Per-employee, per-period pay adjustment.

    ``updated_at`` is refreshed on every write; the recalculation pipeline
    uses it to detect concurrent edits.
    """

    __tablename__ = "adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"),
        nullable=False,
    )
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False)
    subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    value: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    hours: Mapped[Decimal | None] = mapped_column(Numeric(7, 2), nullable=True)
    days: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    constitutive: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    period: Mapped[PayrollPeriod] = relationship(back_populates="adjustments")
    employee: Mapped[Employee] = relationship()


# ===== Audit =====


class PeriodAuditEvent(Base, TimestampMixin):
    """Audit trail entry for period lifecycle actions."""

    __tablename__ = "period_audit_event"

    event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    # Relationships
    period: Mapped[PayrollPeriod] = relationship(back_populates="audit_events")


# ===== Versions =====


class PayrollPeriodVersion(Base, TimestampMixin):
    """Snapshot of a period's records and adjustments taken at each closure.

    ``version_number`` is the period version the closure produced.
    ``snapshot_json`` holds ``{"records": [...], "adjustments": [...]}``.
    """

    __tablename__ = "payroll_period_version"

    version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="CASCADE"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    version_type: Mapped[str] = mapped_column(String, nullable=False)
    transaction_id: Mapped[str] = mapped_column(String, nullable=False)
    restored_from: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)

    total_gross: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_net: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False)
    snapshot_json: Mapped[dict[str, Any]] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("period_id", "version_number", name="payroll_period_version_unique"),
        CheckConstraint(
            "version_type IN ('initial', 'reclose', 'restore')",
            name="payroll_period_version_type_check",
        ),
    )

    # Relationships
    period: Mapped[PayrollPeriod] = relationship(back_populates="versions")
