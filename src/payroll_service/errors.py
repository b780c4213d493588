"""Error taxonomy shared by the compensation and payroll services."""

from __future__ import annotations

from typing import Any


class PayrollServiceError(Exception):
    """Base class for errors surfaced to callers."""

    code = "PAYROLL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(PayrollServiceError):
    """Duplicate run, overlapping interval, or lock not acquired."""

    code = "CONFLICT"


class NotFoundError(PayrollServiceError):
    """Requested entity does not exist."""

    code = "NOT_FOUND"


class NoApplicableCompensationError(NotFoundError):
    """No compensation interval overlaps the requested month."""

    code = "NO_APPLICABLE_COMPENSATION"

    def __init__(self, employee_id: int, month: Any):
        self.employee_id = employee_id
        self.month = month
        super().__init__(
            f"No compensation found for employee {employee_id} in month {month}",
            {"employee_id": employee_id, "month": str(month)},
        )


class ValidationError(PayrollServiceError):
    """Malformed input rejected before any lock or transaction is opened."""

    code = "VALIDATION_ERROR"


class InfrastructureError(PayrollServiceError):
    """A backing service is unavailable. Transient; callers may retry."""

    code = "INFRASTRUCTURE_ERROR"


class LockBackendError(InfrastructureError):
    """The lock backend failed while acquiring a lock."""

    code = "LOCK_BACKEND_UNAVAILABLE"


class StoreUnavailableError(InfrastructureError):
    """The database could not be reached."""

    code = "STORE_UNAVAILABLE"


class UserLookupUnavailableError(InfrastructureError):
    """The user service could not be reached."""

    code = "USER_SERVICE_UNAVAILABLE"
