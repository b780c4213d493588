"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.config import Settings
from payroll_service.resources import AppResources
from payroll_service.services.compensation_service import CompensationService
from payroll_service.services.pay_run_service import PayRunService


def get_resources(request: Request) -> AppResources:
    """Resources opened by the application lifespan."""
    return request.app.state.resources


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db_session(
    resources: Annotated[AppResources, Depends(get_resources)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with resources.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _parse_id_header(value: str, header: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )
    if parsed <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )
    return parsed


async def get_org_id(x_org_id: Annotated[str | None, Header()] = None) -> int:
    """Extract organization ID from header."""
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-Id header is required",
        )
    return _parse_id_header(x_org_id, "X-Org-Id")


async def get_actor_id(x_user_id: Annotated[str | None, Header()] = None) -> int | None:
    """Extract the acting user from header, if present."""
    if not x_user_id:
        return None
    return _parse_id_header(x_user_id, "X-User-Id")


async def get_request_id(
    x_request_id: Annotated[str | None, Header()] = None,
) -> str | None:
    return x_request_id or None


# Type aliases for cleaner dependency injection
Resources = Annotated[AppResources, Depends(get_resources)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
OrgId = Annotated[int, Depends(get_org_id)]
ActorId = Annotated[int | None, Depends(get_actor_id)]
RequestId = Annotated[str | None, Depends(get_request_id)]


async def get_compensation_service(
    db: DbSession,
    resources: Resources,
    settings: AppSettings,
    request_id: RequestId,
) -> CompensationService:
    return CompensationService(
        db,
        resources.lock_service,
        settings=settings,
        user_lookup=resources.user_lookup,
        request_id=request_id,
    )


async def get_pay_run_service(
    db: DbSession,
    resources: Resources,
    settings: AppSettings,
    request_id: RequestId,
) -> PayRunService:
    return PayRunService(
        db,
        resources.lock_service,
        settings=settings,
        user_lookup=resources.user_lookup,
        request_id=request_id,
    )


CompensationServiceDep = Annotated[CompensationService, Depends(get_compensation_service)]
PayRunServiceDep = Annotated[PayRunService, Depends(get_pay_run_service)]
