"""Payroll run API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from payroll_service.api.dependencies import ActorId, OrgId, PayRunServiceDep
from payroll_service.api.schemas import (
    BatchResultResponse,
    DataResponse,
    ErrorResponse,
    PayrollRunBatchGenerate,
    PayrollRunCreated,
    PayrollRunGenerate,
    PayrollRunResponse,
    PayrollRunStatusUpdate,
    PreviewResponse,
)
from payroll_service.errors import NotFoundError
from payroll_service.models import PayrollRun
from payroll_service.observability import traced
from payroll_service.services.pay_run_service import BatchFilter, PayRunService

router = APIRouter(prefix="/runs", tags=["payroll-runs"])


# ============================================================================
# Calculation
# ============================================================================


@router.get(
    "/preview",
    response_model=DataResponse[PreviewResponse],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def preview_payroll(
    service: PayRunServiceDep,
    org_id: OrgId,
    employee_id: Annotated[int, Query(gt=0)],
    month: Annotated[str, Query(description="YYYY-MM")],
) -> DataResponse[PreviewResponse]:
    """Prorated base and performance pay for a month. Nothing is persisted."""
    result = await traced(
        "preview_payroll",
        lambda: service.preview(employee_id, month, org_id=org_id),
        org_id=org_id,
        employee_id=employee_id,
        month=month,
    )
    return DataResponse(data=PreviewResponse.model_validate(result))


@router.post(
    "/generate",
    response_model=DataResponse[PayrollRunCreated],
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def generate_payroll_run(
    service: PayRunServiceDep,
    org_id: OrgId,
    actor_id: ActorId,
    payload: PayrollRunGenerate,
) -> DataResponse[PayrollRunCreated]:
    """Generate a draft payroll run for one employee and month."""
    run = await traced(
        "generate_payroll_run",
        lambda: service.generate(
            org_id=org_id,
            employee_id=payload.employee_id,
            month=payload.month,
            actor_id=actor_id,
            allowances=payload.allowances,
            deductions=payload.deductions,
        ),
        org_id=org_id,
        employee_id=payload.employee_id,
        month=payload.month,
    )
    return DataResponse(data=PayrollRunCreated.model_validate(run))


@router.post(
    "/generate-batch",
    response_model=DataResponse[BatchResultResponse],
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def generate_payroll_batch(
    service: PayRunServiceDep,
    org_id: OrgId,
    actor_id: ActorId,
    payload: PayrollRunBatchGenerate,
) -> DataResponse[BatchResultResponse]:
    """Generate runs for every employee of the organization paid in a month."""
    result = await traced(
        "generate_payroll_batch",
        lambda: service.generate_batch(
            org_id=org_id,
            month=payload.month,
            actor_id=actor_id,
            batch_filter=BatchFilter(employee_ids=payload.employee_ids),
        ),
        org_id=org_id,
        month=payload.month,
    )
    return DataResponse(data=BatchResultResponse.model_validate(result))


# ============================================================================
# Lifecycle
# ============================================================================


@router.patch(
    "/{run_id}",
    response_model=DataResponse[PayrollRunCreated],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def update_payroll_run_status(
    service: PayRunServiceDep,
    org_id: OrgId,
    actor_id: ActorId,
    run_id: Annotated[int, Path(gt=0)],
    payload: PayrollRunStatusUpdate,
) -> DataResponse[PayrollRunCreated]:
    """Confirm or pay a payroll run."""
    await _get_org_run(service, org_id, run_id)
    run = await traced(
        "update_payroll_run_status",
        lambda: service.update_status(run_id, payload.action, actor_id),
        org_id=org_id,
        run_id=run_id,
        action=payload.action.value,
    )
    return DataResponse(data=PayrollRunCreated.model_validate(run))


# ============================================================================
# Read access
# ============================================================================


@router.get(
    "",
    response_model=DataResponse[list[PayrollRunResponse]],
)
async def list_payroll_runs(
    service: PayRunServiceDep,
    org_id: OrgId,
    employee_id: Annotated[int | None, Query(gt=0)] = None,
    month: str | None = None,
) -> DataResponse[list[PayrollRunResponse]]:
    """List payroll runs of the organization, latest month first."""
    runs = await service.list_runs(org_id, employee_id=employee_id, month=month)
    return DataResponse(data=[PayrollRunResponse.model_validate(r) for r in runs])


@router.get(
    "/{run_id}",
    response_model=DataResponse[PayrollRunResponse],
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    service: PayRunServiceDep,
    org_id: OrgId,
    run_id: Annotated[int, Path(gt=0)],
) -> DataResponse[PayrollRunResponse]:
    """Get a specific payroll run by ID."""
    run = await _get_org_run(service, org_id, run_id)
    return DataResponse(data=PayrollRunResponse.model_validate(run))


async def _get_org_run(service: PayRunService, org_id: int, run_id: int) -> PayrollRun:
    run = await service.get_run(run_id)
    if run.org_id != org_id:
        # Runs of other organizations are reported as missing
        raise NotFoundError(f"Payroll run {run_id} not found", {"run_id": run_id})
    return run
