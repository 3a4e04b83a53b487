"""Employee model."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nomina_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from nomina_engine.models.company import Company


class Employee(Base, TimestampMixin):
    """Employee with contract, affiliation and bank details.

    Referenced (never owned) by periods and payroll records.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    document_type: Mapped[str] = mapped_column(String, nullable=False, default="CC")
    document_number: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    contract_type: Mapped[str] = mapped_column(String, nullable=False, default="indefinite")
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    # Social security affiliations
    health_insurer: Mapped[str | None] = mapped_column(String, nullable=True)
    pension_fund: Mapped[str | None] = mapped_column(String, nullable=True)
    risk_insurer: Mapped[str | None] = mapped_column(String, nullable=True)

    # Bank details
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_type: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "document_number", name="employee_company_document_unique"),
        CheckConstraint(
            "contract_type IN ('indefinite', 'fixed_term', 'work_or_labor', 'apprenticeship')",
            name="employee_contract_type_check",
        ),
        CheckConstraint("status IN ('active', 'inactive')", name="employee_status_check"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="employees")

    @property
    def full_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}"
