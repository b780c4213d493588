"""Compensation API endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Query, status

from payroll_service.api.dependencies import ActorId, CompensationServiceDep, OrgId
from payroll_service.api.schemas import (
    CompensationCreate,
    CompensationCreated,
    CompensationResponse,
    DataResponse,
    EffectiveCompensationResponse,
    ErrorResponse,
)
from payroll_service.errors import ValidationError
from payroll_service.observability import traced

router = APIRouter(prefix="/compensations", tags=["compensations"])


@router.post(
    "",
    response_model=DataResponse[CompensationCreated],
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_compensation(
    service: CompensationServiceDep,
    org_id: OrgId,
    actor_id: ActorId,
    payload: CompensationCreate,
) -> DataResponse[CompensationCreated]:
    """Create a compensation interval, closing the open one it supersedes."""
    if actor_id is None:
        raise ValidationError("X-User-Id header is required", {"field": "X-User-Id"})

    compensation = await traced(
        "create_compensation",
        lambda: service.create_compensation(
            org_id=org_id,
            employee_id=payload.employee_id,
            base_salary=payload.base_salary,
            perf_salary=payload.perf_salary,
            valid_from=payload.valid_from,
            operator_id=actor_id,
            reason=payload.reason,
        ),
        org_id=org_id,
        employee_id=payload.employee_id,
    )
    return DataResponse(data=CompensationCreated.model_validate(compensation))


@router.get(
    "/effective",
    response_model=DataResponse[EffectiveCompensationResponse | None],
)
async def get_effective_compensation(
    service: CompensationServiceDep,
    org_id: OrgId,
    employee_id: Annotated[int, Query(gt=0)],
    on: Annotated[date, Query(alias="date")],
) -> DataResponse[EffectiveCompensationResponse | None]:
    """Compensation in effect for an employee on a date, or null."""
    compensation = await traced(
        "get_effective_compensation",
        lambda: service.get_effective_compensation(employee_id, on),
        org_id=org_id,
        employee_id=employee_id,
    )
    if compensation is None or compensation.org_id != org_id:
        return DataResponse(data=None)

    return DataResponse(
        data=EffectiveCompensationResponse(
            employee_id=employee_id,
            effective_date=on,
            base_salary=compensation.base_salary,
            perf_salary=compensation.perf_salary,
            source_comp_id=compensation.comp_id,
        )
    )


@router.get(
    "",
    response_model=DataResponse[list[CompensationResponse]],
)
async def get_compensation_history(
    service: CompensationServiceDep,
    org_id: OrgId,
    employee_id: Annotated[int, Query(gt=0)],
    from_date: Annotated[date | None, Query(alias="from")] = None,
    to_date: Annotated[date | None, Query(alias="to")] = None,
) -> DataResponse[list[CompensationResponse]]:
    """Compensation history of an employee, latest first."""
    history = await service.get_compensation_history(employee_id, from_date, to_date)
    return DataResponse(
        data=[
            CompensationResponse.model_validate(c) for c in history if c.org_id == org_id
        ]
    )
