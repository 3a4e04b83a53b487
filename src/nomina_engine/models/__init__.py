"""ORM models for the nomina engine."""

from nomina_engine.models.base import Base, TimestampMixin
from nomina_engine.models.benefits import SocialBenefitCalculation
from nomina_engine.models.company import Company
from nomina_engine.models.employee import Employee
from nomina_engine.models.payroll import (
    Adjustment,
    PayrollPeriod,
    PayrollPeriodVersion,
    PayrollRecord,
    PeriodAuditEvent,
)

__all__ = [
    "Adjustment",
    "Base",
    "Company",
    "Employee",
    "PayrollPeriod",
    "PayrollPeriodVersion",
    "PayrollRecord",
    "PeriodAuditEvent",
    "SocialBenefitCalculation",
    "TimestampMixin",
]
