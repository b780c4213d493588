"""Database connection and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, AsyncGenerator, Iterator

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payroll_service.errors import StoreUnavailableError
from payroll_service.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from payroll_service.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Create async database engine."""
    options: dict = {"echo": False, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=20)
    return create_async_engine(settings.database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session, committing on success."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate connection-level database failures into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailableError("Database unavailable", {"error": str(e.orig)}) from e


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables (development and tests; migrations are external)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session: AsyncSession) -> bool:
    """Check that the database answers."""
    await session.execute(text("SELECT 1"))
    return True
