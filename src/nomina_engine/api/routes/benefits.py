"""Social benefit accrual endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from nomina_engine.api.dependencies import DbSession
from nomina_engine.api.schemas import (
    ErrorResponse,
    ProvisionResponse,
    SocialBenefitRequest,
    SocialBenefitResponse,
)
from nomina_engine.models import SocialBenefitCalculation
from nomina_engine.services.benefit_service import SocialBenefitService

router = APIRouter(prefix="/social-benefits", tags=["social-benefits"])


def _stored_response(row: SocialBenefitCalculation) -> SocialBenefitResponse:
    return SocialBenefitResponse(
        employee_id=row.employee_id,
        benefit_type=row.benefit_type,
        period_start=row.period_start,
        period_end=row.period_end,
        amount=row.amount,
        basis=row.basis_json or {},
        stored=True,
    )


@router.post(
    "",
    response_model=SocialBenefitResponse,
    status_code=status.HTTP_200_OK,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def accrue_benefit(db: DbSession, payload: SocialBenefitRequest) -> SocialBenefitResponse:
    """Accrue severance, severance interest, service bonus or vacation."""
    service = SocialBenefitService(db)
    if payload.store:
        row = await service.calculate_and_store(
            payload.employee_id,
            payload.benefit_type,
            payload.period_start,
            payload.period_end,
            reference_date=payload.reference_date,
            transport_subsidy=payload.transport_subsidy,
        )
        return _stored_response(row)

    accrual = await service.preview(
        payload.employee_id,
        payload.benefit_type,
        payload.period_start,
        payload.period_end,
        reference_date=payload.reference_date,
        transport_subsidy=payload.transport_subsidy,
    )
    return SocialBenefitResponse(
        employee_id=payload.employee_id,
        benefit_type=accrual.benefit_type.value,
        period_start=payload.period_start,
        period_end=payload.period_end,
        amount=accrual.amount,
        basis=accrual.basis(),
        stored=False,
    )


@router.post(
    "/periods/{period_id}/provision",
    response_model=ProvisionResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def provision_period(db: DbSession, period_id: UUID) -> ProvisionResponse:
    """Store every benefit accrual for the employees of a closed period."""
    result = await SocialBenefitService(db).provision_period(period_id)
    return ProvisionResponse(
        period_id=result.period_id,
        employee_count=result.employee_count,
        provisions=[_stored_response(row) for row in result.provisions],
        skipped=result.skipped,
    )
