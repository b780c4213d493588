"""Pytest fixtures for payroll service tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_service.api.app import create_app
from payroll_service.config import Settings
from payroll_service.database import create_engine, create_schema, create_session_factory
from payroll_service.errors import NotFoundError
from payroll_service.resources import AppResources
from payroll_service.services.compensation_service import CompensationService
from payroll_service.services.locking_service import DistributedLockService
from payroll_service.services.pay_run_service import PayRunService
from payroll_service.services.user_lookup import UserSummary

ORG_ID = 1
OTHER_ORG_ID = 2
OPERATOR_ID = 900
ALICE_ID = 101
BOB_ID = 102
CAROL_ID = 103


class InMemoryUserLookup:
    """UserLookup fake keyed by user id -> org id."""

    def __init__(self, users: dict[int, int]):
        self.users = users
        self.calls: list[tuple[int, int]] = []

    async def validate(self, user_id: int, org_id: int) -> UserSummary:
        self.calls.append((user_id, org_id))
        if self.users.get(user_id) != org_id:
            raise NotFoundError(
                f"User {user_id} not found in organization {org_id}",
                {"user_id": user_id, "org_id": org_id},
            )
        return UserSummary(user_id=user_id, org_id=org_id, status="active")


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings with a file-backed SQLite database and short lock waits."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/payroll.db",
        redis_url="redis://fake:6379/0",
        user_service_url=None,
        user_service_timeout=1.0,
        host="127.0.0.1",
        port=3003,
        debug=False,
        log_level="DEBUG",
        lock_default_ttl=5.0,
        lock_retry_delay_ms=5,
        lock_max_retries=2,
        compensation_lock_ttl=5.0,
        compensation_lock_retries=1,
        payroll_run_lock_ttl=5.0,
        payroll_run_lock_retries=1,
        batch_lock_ttl=5.0,
        batch_lock_retries=0,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings):
    """Create test database engine with the schema in place."""
    engine = create_engine(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def redis():
    """An isolated in-process Redis with Lua scripting."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def lock_service(redis) -> DistributedLockService:
    return DistributedLockService(
        redis, default_ttl=5.0, default_retry_delay=0.005, default_max_retries=2
    )


@pytest.fixture
def user_lookup() -> InMemoryUserLookup:
    return InMemoryUserLookup(
        {ALICE_ID: ORG_ID, BOB_ID: ORG_ID, CAROL_ID: ORG_ID, OPERATOR_ID: ORG_ID}
    )


@pytest.fixture
def compensation_service(session, lock_service, settings) -> CompensationService:
    return CompensationService(session, lock_service, settings=settings)


@pytest.fixture
def pay_run_service(session, lock_service, settings) -> PayRunService:
    return PayRunService(session, lock_service, settings=settings)


@pytest.fixture
def make_compensation_service(session_factory, lock_service, settings):
    """Build services on fresh sessions, for concurrent callers."""

    def factory(session: AsyncSession) -> CompensationService:
        return CompensationService(session, lock_service, settings=settings)

    return factory


@pytest.fixture
def make_pay_run_service(lock_service, settings):
    def factory(session: AsyncSession) -> PayRunService:
        return PayRunService(session, lock_service, settings=settings)

    return factory


@pytest_asyncio.fixture
async def seed_compensation(compensation_service: CompensationService):
    """Create compensation intervals through the service."""

    async def seed(
        employee_id: int,
        valid_from: date,
        base: str | Decimal,
        perf: str | Decimal = "0",
        org_id: int = ORG_ID,
    ):
        return await compensation_service.create_compensation(
            org_id=org_id,
            employee_id=employee_id,
            base_salary=base,
            perf_salary=perf,
            valid_from=valid_from,
            operator_id=OPERATOR_ID,
        )

    return seed


@pytest_asyncio.fixture
async def resources(engine, session_factory, redis, lock_service, user_lookup):
    return AppResources(
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        lock_service=lock_service,
        user_lookup=user_lookup,
    )


@pytest_asyncio.fixture
async def client(settings, resources) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the application in-process."""
    app = create_app(settings=settings, resources=resources)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
