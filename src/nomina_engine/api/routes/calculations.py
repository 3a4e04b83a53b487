"""Stateless compensation calculation endpoint."""

from fastapi import APIRouter, status

from nomina_engine.api.schemas import BreakdownResponse, CalculationRequest, ErrorResponse
from nomina_engine.calculators.engine import CompensationCalculator
from nomina_engine.calculators.types import AdjustmentInput, EmployeeInput
from nomina_engine.config import get_settings

router = APIRouter(prefix="/calculations", tags=["calculations"])


@router.post(
    "",
    response_model=BreakdownResponse,
    status_code=status.HTTP_200_OK,
    responses={422: {"model": ErrorResponse}},
)
async def calculate(payload: CalculationRequest) -> BreakdownResponse:
    """Calculate one employee's pay without touching the database."""
    settings = get_settings()
    calculator = CompensationCalculator(
        disability_policy=settings.disability_policy,
        engine_version=settings.engine_version,
    )
    employee = EmployeeInput(
        employee_id=payload.employee_id,
        base_salary=payload.base_salary,
        worked_days=payload.worked_days,
        adjustments=tuple(
            AdjustmentInput(
                adjustment_type=a.adjustment_type,
                value=a.value,
                hours=a.hours,
                days=a.days,
                subtype=a.subtype,
                constitutive=a.constitutive,
                adjustment_id=a.adjustment_id,
            )
            for a in payload.adjustments
        ),
    )
    breakdown = calculator.calculate(employee, payload.period_type, payload.reference_date)
    return BreakdownResponse.model_validate(breakdown.to_dict())
