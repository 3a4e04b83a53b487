"""Social benefit accrual model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from nomina_engine.models.base import Base, TimestampMixin, utcnow


class SocialBenefitCalculation(Base, TimestampMixin):
    """Stored accrual, upserted by (employee, benefit type, start, end)."""

    __tablename__ = "social_benefit_calculation"

    calculation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    benefit_type: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Basis used for the amount
    monthly_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    monthly_subsidy: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    day_count: Mapped[int] = mapped_column(Integer, nullable=False)
    basis_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    calculated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "benefit_type",
            "period_start",
            "period_end",
            name="social_benefit_key_unique",
        ),
        CheckConstraint(
            "benefit_type IN ('severance', 'severance_interest', 'service_bonus', 'vacation')",
            name="social_benefit_type_check",
        ),
        CheckConstraint("period_end >= period_start", name="social_benefit_dates_check"),
    )
