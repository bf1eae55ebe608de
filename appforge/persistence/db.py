from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from appforge.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    """Engine kwargs for the configured database.

    Postgres gets a bounded asyncpg pool and a server-side statement timeout,
    so a stuck version-bump row lock fails the request instead of pinning a
    connection. sqlite (tests, local runs) keeps driver defaults.
    """
    options: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=max(1, settings.api_db_pool_size),
        max_overflow=max(0, settings.api_db_max_overflow),
        pool_timeout=30,
        pool_recycle=1800,
    )
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.api_db_statement_timeout_ms)}
        }
    return options


_settings = get_settings()
engine = create_async_engine(_settings.database_url, **engine_options(_settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, Any]:
    pool = engine.sync_engine.pool
    stats: dict[str, Any] = {"dialect": engine.dialect.name}
    for key, attr in (("size", "size"), ("checked_out", "checkedout"), ("overflow", "overflow")):
        reader = getattr(pool, attr, None)
        stats[key] = int(reader()) if callable(reader) else None
    return stats
