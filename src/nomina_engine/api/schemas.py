"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from nomina_engine.calculators.benefits import BenefitType
from nomina_engine.calculators.types import AdjustmentType, PeriodType
from nomina_engine.services.recalculation_service import ChangeAction


# ============================================================================
# Calculation schemas
# ============================================================================


class AdjustmentPayload(BaseModel):
    """One novedad in a request."""

    adjustment_type: AdjustmentType
    subtype: str | None = None
    value: Decimal | None = None
    hours: Decimal | None = None
    days: Decimal | None = None
    constitutive: bool | None = None
    adjustment_id: UUID | None = None


class CalculationRequest(BaseModel):
    """Stateless single-employee calculation."""

    employee_id: UUID
    base_salary: Decimal
    worked_days: Decimal
    period_type: PeriodType
    reference_date: date
    adjustments: list[AdjustmentPayload] = Field(default_factory=list)


class PayLineResponse(BaseModel):
    line_type: str
    code: str
    amount: Decimal
    quantity: Decimal | None = None
    rate: Decimal | None = None
    source_adjustment_id: UUID | None = None
    constitutive: bool = False


class BreakdownResponse(BaseModel):
    """Full pay breakdown for one employee."""

    employee_id: UUID
    period_type: PeriodType
    reference_date: date
    parameters_effective_date: date
    calculation_id: UUID
    inputs_fingerprint: str

    base_salary: Decimal
    worked_days: Decimal
    effective_worked_days: Decimal
    daily_salary: Decimal
    hourly_divisor: int
    hourly_rate: Decimal

    regular_pay: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    disability_pay: Decimal
    transport_subsidy: Decimal
    gross_pay: Decimal

    constitutive_total: Decimal
    ibc: Decimal
    health_deduction: Decimal
    pension_deduction: Decimal
    solidarity_fund: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    employer_health: Decimal
    employer_pension: Decimal
    employer_risk_insurance: Decimal
    employer_compensation_fund: Decimal
    employer_icbf: Decimal
    employer_sena: Decimal
    employer_contributions: Decimal
    total_payroll_cost: Decimal

    lines: list[PayLineResponse]
    warnings: list[str]


# ============================================================================
# Period schemas
# ============================================================================


class PeriodCreate(BaseModel):
    """Schema for opening a new draft period."""

    company_id: UUID
    start_date: date
    end_date: date
    period_type: PeriodType
    actor_id: str | None = None


class PeriodResponse(BaseModel):
    """Schema for period response."""

    model_config = ConfigDict(from_attributes=True)

    period_id: UUID
    company_id: UUID
    start_date: date
    end_date: date
    period_type: str
    status: str
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    employee_count: int
    version: int
    reopen_count: int
    closed_at: datetime | None = None
    reopened_at: datetime | None = None
    reopened_by: str | None = None
    created_at: datetime


class PeriodCalculateRequest(BaseModel):
    """Batch calculation; omit employee_ids to calculate every active employee."""

    employee_ids: list[UUID] | None = None
    worked_days: dict[UUID, Decimal] | None = None


class EmployeeErrorResponse(BaseModel):
    employee_id: UUID
    kind: str
    message: str
    details: list[dict[str, Any]]


class PeriodCalculateResponse(BaseModel):
    period_id: UUID
    success_count: int
    error_count: int
    total_gross: Decimal
    total_net: Decimal
    results: list[BreakdownResponse]
    errors: list[EmployeeErrorResponse]


class CloseRequest(BaseModel):
    employee_ids: list[UUID]
    actor_id: str | None = None


class NextPeriodResponse(BaseModel):
    period_type: str
    start_date: date
    end_date: date


class CloseResponse(BaseModel):
    """Schema for closure response."""

    period_id: UUID
    transaction_id: str
    status: str
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    employee_count: int
    verified: bool
    mismatches: list[str]
    next_period: NextPeriodResponse
    closed_at: datetime
    duration_ms: int
    rollback_executed: bool


class ReopenRequest(BaseModel):
    actor_id: str
    justification: str


# ============================================================================
# Recalculation schemas
# ============================================================================


class AdjustmentChangePayload(BaseModel):
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


class RecalculationPreviewRequest(BaseModel):
    changes: list[AdjustmentChangePayload]


class EmployeeDiffResponse(BaseModel):
    employee_id: UUID
    new: BreakdownResponse
    differences: dict[str, tuple[str | None, str]]


class RecalculationPreviewResponse(BaseModel):
    """``adjustment_versions`` must be sent back unchanged to apply."""

    period_id: UUID
    employees: list[EmployeeDiffResponse]
    adjustment_versions: dict[UUID, dict[UUID, str]]


class RecalculationApplyRequest(BaseModel):
    changes: list[AdjustmentChangePayload]
    adjustment_versions: dict[UUID, dict[UUID, str]]
    justification: str
    actor_id: str | None = None


# ============================================================================
# Version schemas
# ============================================================================


class PeriodVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version_number: int
    version_type: str
    transaction_id: str
    restored_from: int | None = None
    actor_id: str | None = None
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    employee_count: int
    created_at: datetime


class FieldChangeResponse(BaseModel):
    field: str
    before: Decimal
    after: Decimal
    difference: Decimal


class AdjustmentVersionChangeResponse(BaseModel):
    adjustment_id: UUID
    action: str
    adjustment_type: str
    subtype: str | None = None
    value_difference: Decimal


class EmployeeVersionChangeResponse(BaseModel):
    employee_id: UUID
    change_type: str
    impact: Decimal
    field_changes: list[FieldChangeResponse]
    adjustment_changes: list[AdjustmentVersionChangeResponse]


class VersionComparisonResponse(BaseModel):
    period_id: UUID
    from_version: int
    to_version: int
    employees_before: int
    employees_after: int
    total_impact: Decimal
    adjustments_added: int
    adjustments_removed: int
    adjustments_modified: int
    employees: list[EmployeeVersionChangeResponse]


class RestoreVersionRequest(BaseModel):
    actor_id: str
    justification: str


# ============================================================================
# Social benefit schemas
# ============================================================================


class SocialBenefitRequest(BaseModel):
    """Accrue one benefit; ``store`` upserts the result."""

    employee_id: UUID
    benefit_type: BenefitType
    period_start: date
    period_end: date
    reference_date: date | None = None
    transport_subsidy: Decimal | None = None
    store: bool = True


class SocialBenefitResponse(BaseModel):
    employee_id: UUID
    benefit_type: str
    period_start: date
    period_end: date
    amount: Decimal
    basis: dict[str, Any]
    stored: bool


class ProvisionResponse(BaseModel):
    period_id: UUID
    employee_count: int
    provisions: list[SocialBenefitResponse]
    skipped: list[UUID]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    kind: str
    message: str
    details: list[dict[str, Any]] = Field(default_factory=list)
    rollback_executed: bool | None = None
