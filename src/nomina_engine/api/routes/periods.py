"""Payroll period API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from nomina_engine.api.dependencies import DbSession
from nomina_engine.api.schemas import (
    AdjustmentVersionChangeResponse,
    BreakdownResponse,
    CloseRequest,
    CloseResponse,
    EmployeeDiffResponse,
    EmployeeErrorResponse,
    EmployeeVersionChangeResponse,
    ErrorResponse,
    FieldChangeResponse,
    NextPeriodResponse,
    PeriodCalculateRequest,
    PeriodCalculateResponse,
    PeriodCreate,
    PeriodResponse,
    PeriodVersionResponse,
    RecalculationApplyRequest,
    RecalculationPreviewRequest,
    RecalculationPreviewResponse,
    ReopenRequest,
    RestoreVersionRequest,
    VersionComparisonResponse,
)
from nomina_engine.services.closure_service import ClosureCoordinator, ClosureResult
from nomina_engine.services.period_service import PeriodService
from nomina_engine.services.recalculation_service import (
    AdjustmentChange,
    AdjustmentRecalculationPipeline,
    RecalculationPreview,
)
from nomina_engine.services.version_service import PeriodVersionService, VersionComparison

router = APIRouter(prefix="/periods", tags=["periods"])

PeriodId = Annotated[UUID, Path()]


def _close_response(result: ClosureResult) -> CloseResponse:
    return CloseResponse(
        period_id=result.period_id,
        transaction_id=result.transaction_id,
        status=result.status,
        total_gross=result.totals.total_gross,
        total_deductions=result.totals.total_deductions,
        total_net=result.totals.total_net,
        employee_count=result.totals.employee_count,
        verified=result.verification.consistent,
        mismatches=result.verification.mismatches,
        next_period=NextPeriodResponse(
            period_type=result.next_period.period_type.value,
            start_date=result.next_period.start_date,
            end_date=result.next_period.end_date,
        ),
        closed_at=result.closed_at,
        duration_ms=result.duration_ms,
        rollback_executed=result.rollback_executed,
    )


def _changes(payload: RecalculationPreviewRequest | RecalculationApplyRequest) -> list[AdjustmentChange]:
    return [AdjustmentChange(**change.model_dump()) for change in payload.changes]


# ============================================================================
# Period lifecycle
# ============================================================================


@router.post(
    "",
    response_model=PeriodResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_period(db: DbSession, payload: PeriodCreate) -> PeriodResponse:
    """Open a new draft period."""
    period = await PeriodService(db).create_period(
        payload.company_id,
        payload.start_date,
        payload.end_date,
        payload.period_type,
        actor_id=payload.actor_id,
    )
    await db.refresh(period)
    return PeriodResponse.model_validate(period)


@router.get(
    "/{period_id}",
    response_model=PeriodResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_period(db: DbSession, period_id: PeriodId) -> PeriodResponse:
    """Get a period by ID."""
    period = await PeriodService(db).get_period(period_id)
    return PeriodResponse.model_validate(period)


@router.post(
    "/{period_id}/calculate",
    response_model=PeriodCalculateResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def calculate_period(
    db: DbSession,
    period_id: PeriodId,
    payload: PeriodCalculateRequest,
) -> PeriodCalculateResponse:
    """Calculate and store records; per-employee failures are reported, not raised."""
    result = await PeriodService(db).calculate_period(
        period_id,
        employee_ids=payload.employee_ids,
        worked_days=payload.worked_days,
    )
    return PeriodCalculateResponse(
        period_id=period_id,
        success_count=result.success_count,
        error_count=result.error_count,
        total_gross=result.total_gross,
        total_net=result.total_net,
        results=[BreakdownResponse.model_validate(b.to_dict()) for b in result.results.values()],
        errors=[
            EmployeeErrorResponse(employee_id=employee_id, **error.to_dict())
            for employee_id, error in result.errors.items()
        ],
    )


@router.post(
    "/{period_id}/close",
    response_model=CloseResponse,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def close_period(db: DbSession, period_id: PeriodId, payload: CloseRequest) -> CloseResponse:
    """Close (or re-close) a period for the selected employees."""
    result = await ClosureCoordinator(db).close(
        period_id, payload.employee_ids, actor_id=payload.actor_id
    )
    return _close_response(result)


@router.post(
    "/{period_id}/reopen",
    response_model=PeriodResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def reopen_period(db: DbSession, period_id: PeriodId, payload: ReopenRequest) -> PeriodResponse:
    """Reopen a closed period; actor and justification are audited."""
    period = await PeriodService(db).reopen_period(
        period_id, actor_id=payload.actor_id, justification=payload.justification
    )
    return PeriodResponse.model_validate(period)


# ============================================================================
# Adjustment recalculation
# ============================================================================


@router.post(
    "/{period_id}/recalculation/preview",
    response_model=RecalculationPreviewResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def preview_recalculation(
    db: DbSession,
    period_id: PeriodId,
    payload: RecalculationPreviewRequest,
) -> RecalculationPreviewResponse:
    """Show old vs. new figures for a reopened period; nothing is persisted."""
    preview = await AdjustmentRecalculationPipeline(db).preview(period_id, _changes(payload))
    return RecalculationPreviewResponse(
        period_id=preview.period_id,
        employees=[
            EmployeeDiffResponse(
                employee_id=e.employee_id,
                new=BreakdownResponse.model_validate(e.new.to_dict()),
                differences=e.differences,
            )
            for e in preview.employees
        ],
        adjustment_versions=preview.adjustment_versions,
    )


@router.post(
    "/{period_id}/recalculation/apply",
    response_model=CloseResponse,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def apply_recalculation(
    db: DbSession,
    period_id: PeriodId,
    payload: RecalculationApplyRequest,
) -> CloseResponse:
    """Apply previewed adjustment changes to a reopened period and re-close it.

    Responds 409 StaleAdjustmentSet when any previewed employee's adjustments
    changed after the preview.
    """
    preview = RecalculationPreview(
        period_id=period_id,
        employees=[],
        adjustment_versions=payload.adjustment_versions,
    )
    result = await AdjustmentRecalculationPipeline(db).apply(
        preview,
        _changes(payload),
        payload.justification,
        actor_id=payload.actor_id,
    )
    return _close_response(result)


# ============================================================================
# Versions
# ============================================================================


def _comparison_response(comparison: VersionComparison) -> VersionComparisonResponse:
    return VersionComparisonResponse(
        period_id=comparison.period_id,
        from_version=comparison.from_version,
        to_version=comparison.to_version,
        employees_before=comparison.employees_before,
        employees_after=comparison.employees_after,
        total_impact=comparison.total_impact,
        adjustments_added=comparison.count_adjustments("added"),
        adjustments_removed=comparison.count_adjustments("removed"),
        adjustments_modified=comparison.count_adjustments("modified"),
        employees=[
            EmployeeVersionChangeResponse(
                employee_id=e.employee_id,
                change_type=e.change_type,
                impact=e.impact,
                field_changes=[
                    FieldChangeResponse(
                        field=c.field, before=c.before, after=c.after, difference=c.difference
                    )
                    for c in e.field_changes
                ],
                adjustment_changes=[
                    AdjustmentVersionChangeResponse(
                        adjustment_id=c.adjustment_id,
                        action=c.action,
                        adjustment_type=c.adjustment_type,
                        subtype=c.subtype,
                        value_difference=c.value_difference,
                    )
                    for c in e.adjustment_changes
                ],
            )
            for e in comparison.employees
        ],
    )


@router.get(
    "/{period_id}/versions",
    response_model=list[PeriodVersionResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_versions(db: DbSession, period_id: PeriodId) -> list[PeriodVersionResponse]:
    """Versions stored at each closure, oldest first."""
    versions = await PeriodVersionService(db).list_versions(period_id)
    return [PeriodVersionResponse.model_validate(v) for v in versions]


@router.get(
    "/{period_id}/versions/compare",
    response_model=VersionComparisonResponse,
    responses={404: {"model": ErrorResponse}},
)
async def compare_versions(
    db: DbSession,
    period_id: PeriodId,
    from_version: Annotated[int | None, Query()] = None,
    to_version: Annotated[int | None, Query()] = None,
) -> VersionComparisonResponse:
    """Employee-level differences; defaults to the first and latest closures."""
    comparison = await PeriodVersionService(db).compare(
        period_id, from_version=from_version, to_version=to_version
    )
    return _comparison_response(comparison)


@router.post(
    "/{period_id}/versions/{version_number}/restore",
    response_model=CloseResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def restore_version(
    db: DbSession,
    period_id: PeriodId,
    version_number: int,
    payload: RestoreVersionRequest,
) -> CloseResponse:
    """Put a reopened period back to a stored version and re-close it."""
    result = await PeriodVersionService(db).restore_version(
        period_id, version_number, actor_id=payload.actor_id, justification=payload.justification
    )
    return _close_response(result)
