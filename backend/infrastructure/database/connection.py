"""Async engine and session factory for the billing database."""
import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Engine for ``settings.database_url``.

    Pool sizing and SSL only apply to server databases; SQLite URLs keep the
    driver defaults.
    """
    options: dict[str, Any] = {"echo": settings.database_echo}
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=10,  # seconds to wait for a free connection
            pool_recycle=1800,
        )
        if settings.is_production:
            options["connect_args"] = {"ssl": "require"}
    return create_async_engine(settings.database_url, **options)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records are read after commit by the repository, so nothing may expire
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False, autoflush=False)


engine = create_engine(get_settings())
async_session_maker = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, rolled back when the request fails."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create missing billing tables (development and tests)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Billing tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))


async def close_db() -> None:
    await engine.dispose()
