# src/Metaport/db.py
from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from Metaport.config import load_settings

log = structlog.get_logger()


def _normalize_url(url: str) -> str:
    # Upgrade to async drivers if user supplies sync URLs
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for(url: str) -> AsyncEngine:
    url = _normalize_url(url)
    kwargs: dict[str, object] = {}
    if url.startswith("sqlite+aiosqlite://"):
        kwargs.update(connect_args={"timeout": 30})
        # Critical for in-memory DBs: share a single connection so schema persists
        if ":memory:" in url:
            kwargs.update(poolclass=StaticPool)
    elif url.startswith("postgresql+asyncpg://"):
        kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10, pool_timeout=30)
    return create_async_engine(url, **kwargs)


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        url = _normalize_url(load_settings().database_url)
        _engine = create_engine_for(url)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        from sqlalchemy.engine import make_url

        parsed = make_url(url)
        log.info(
            "db.connection.config",
            driver=parsed.drivername,
            host=parsed.host or "",
            database=parsed.database or "",
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create all tables; alembic migrations are the production path."""
    from Metaport import models as _models  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@contextlib.asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    sm = sessionmaker or get_sessionmaker()
    async with sm() as s:
        try:
            yield s
            await s.commit()
        except BaseException:
            log.error("db.session.error", exc_info=True)
            await s.rollback()
            raise
