from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from config import Settings, get_settings

from ..models import Base
from ..obs import add_query_logger

logger = logging.getLogger(__name__)


def build_engine(url: str, settings: Settings | None = None) -> AsyncEngine:
    """Create an async engine with pool limits taken from ``settings``.

    SQLite URLs get a shared static pool instead, so in-memory databases
    survive across sessions.
    """

    settings = settings or get_settings()
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        idle = settings.db_max_idle_conns
        engine = create_async_engine(
            url,
            pool_size=idle,
            max_overflow=max(settings.db_max_open_conns - idle, 0),
            # recycle at whichever limit comes first
            pool_recycle=min(settings.db_conn_max_lifetime, settings.db_conn_max_idle_time),
            pool_pre_ping=True,
        )
    add_query_logger(
        engine,
        engine.url.database or "memory",
        slow_ms=settings.db_slow_query_ms,
        sample_rate=settings.db_query_sample_rate,
    )
    logger.info("database engine ready (%s)", engine.dialect.name)
    return engine


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_test_engine() -> AsyncEngine:
    """Return an in-memory SQLite engine shared across sessions."""

    return build_engine("sqlite+aiosqlite://")
