"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from payroll_service.services.state_machine import PayrollRunAction

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Envelope used by every successful response."""

    data: T


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str
    details: dict[str, Any] | None = None


# ============================================================================
# Compensation schemas
# ============================================================================


class CompensationCreate(BaseModel):
    """Schema for creating a compensation interval."""

    employee_id: int = Field(gt=0)
    base_salary: Decimal
    perf_salary: Decimal
    valid_from: date
    reason: str | None = Field(default=None, max_length=200)


class CompensationCreated(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    comp_id: int
    created_at: datetime


class CompensationResponse(BaseModel):
    """Schema for a compensation interval."""

    model_config = ConfigDict(from_attributes=True)

    comp_id: int
    org_id: int
    employee_id: int
    base_salary: Decimal
    perf_salary: Decimal
    valid_from: date
    valid_to: date | None = None
    reason: str | None = None
    created_by: int
    created_at: datetime


class EffectiveCompensationResponse(BaseModel):
    """Compensation in effect on a given date."""

    model_config = ConfigDict(populate_by_name=True)

    employee_id: int
    effective_date: date = Field(alias="date")
    base_salary: Decimal
    perf_salary: Decimal
    source_comp_id: int


# ============================================================================
# Payroll run schemas
# ============================================================================


class ProrationSegmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    comp_id: int
    covered_from: date
    covered_to: date
    days: int
    base_salary: Decimal
    perf_salary: Decimal


class PreviewResponse(BaseModel):
    """Prorated amounts for one employee and month, nothing persisted."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    month: date
    days_in_month: int
    days_covered: int
    base_amount: Decimal
    perf_amount: Decimal
    segments: list[ProrationSegmentResponse]


class PayrollRunGenerate(BaseModel):
    """Schema for generating a payroll run."""

    employee_id: int = Field(gt=0)
    month: str = Field(description="YYYY-MM or any date within the month")
    allowances: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")


class PayrollRunBatchGenerate(BaseModel):
    """Schema for generating runs for a whole organization."""

    month: str
    employee_ids: list[int] | None = None


class PayrollRunStatusUpdate(BaseModel):
    action: PayrollRunAction


class PayrollRunCreated(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: int
    status: str


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    run_id: int
    org_id: int
    employee_id: int
    payroll_month: date
    period_start: date
    period_end: date
    days_in_month: int
    days_covered: int
    base_amount: Decimal
    perf_amount: Decimal
    allowances: Decimal
    deductions: Decimal
    gross_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    status: str
    snapshot_json: dict[str, Any] | None = None
    created_by: int | None = None
    created_at: datetime
    updated_at: datetime


class BatchResultResponse(BaseModel):
    """Schema for a batch generation outcome."""

    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    org_id: int
    month: date
    submitted: bool = True
    estimated: int
    generated: list[int]
    skipped: list[int]
    failed: dict[int, str]
