"""API routes."""

from payroll_service.api.routes.compensations import router as compensations_router
from payroll_service.api.routes.health import router as health_router
from payroll_service.api.routes.payroll_runs import router as payroll_runs_router

__all__ = ["compensations_router", "health_router", "payroll_runs_router"]
