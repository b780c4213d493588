"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_service import __version__
from payroll_service.api.routes import (
    compensations_router,
    health_router,
    payroll_runs_router,
)
from payroll_service.config import Settings, get_settings
from payroll_service.errors import (
    ConflictError,
    InfrastructureError,
    NotFoundError,
    PayrollServiceError,
    ValidationError,
)
from payroll_service.resources import AppResources
from payroll_service.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)

# Most specific first; the first match wins
ERROR_STATUS: list[tuple[type[PayrollServiceError], int]] = [
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InfrastructureError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: PayrollServiceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: Settings | None = None,
    resources: AppResources | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When ``resources`` is given the caller owns them; otherwise they are
    opened and closed by the application lifespan.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if resources is not None:
            app.state.resources = resources
            yield
            return

        opened = await AppResources.open(settings)
        app.state.resources = opened
        try:
            yield
        finally:
            await opened.close()

    app = FastAPI(
        title="Payroll Service API",
        description="Compensation timelines, monthly proration and payroll runs",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if resources is not None:
        app.state.resources = resources

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollServiceError)
    async def payroll_error_handler(
        request: Request, exc: PayrollServiceError
    ) -> JSONResponse:
        """Translate domain errors into HTTP responses."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": exc.message,
                "code": exc.code,
                "details": jsonable_encoder(exc.details),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)

    api = APIRouter(prefix="/api/v1/payroll")
    api.include_router(compensations_router)
    api.include_router(payroll_runs_router)
    app.include_router(api)

    return app
