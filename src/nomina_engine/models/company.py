"""Company (employer organization) model."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nomina_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from nomina_engine.models.employee import Employee
    from nomina_engine.models.payroll import PayrollPeriod


class Company(Base, TimestampMixin):
    """Employer that owns employees and payroll periods."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    tax_id: Mapped[str] = mapped_column(String, nullable=False)
    default_period_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="monthly",
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        UniqueConstraint("tax_id", name="company_tax_id_unique"),
        CheckConstraint(
            "default_period_type IN ('weekly', 'biweekly', 'monthly')",
            name="company_period_type_check",
        ),
        CheckConstraint("status IN ('active', 'suspended', 'closed')", name="company_status_check"),
    )

    # Relationships
    employees: Mapped[list[Employee]] = relationship(back_populates="company")
    periods: Mapped[list[PayrollPeriod]] = relationship(back_populates="company")
