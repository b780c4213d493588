"""ORM models."""

from payroll_service.models.audit import AuditLog, ChangeAction, EntityType
from payroll_service.models.base import Base, TimestampMixin
from payroll_service.models.compensation import CompensationInterval
from payroll_service.models.payroll import PayrollRun

__all__ = [
    "AuditLog",
    "Base",
    "ChangeAction",
    "CompensationInterval",
    "EntityType",
    "PayrollRun",
    "TimestampMixin",
]
