from __future__ import annotations

from appforge.core.config import Settings
from appforge.persistence.db import engine_options


def test_sqlite_keeps_driver_defaults() -> None:
    options = engine_options(Settings(database_url="sqlite+aiosqlite:///./local.db"))
    assert options == {"pool_pre_ping": True}


def test_postgres_gets_bounded_pool_and_statement_timeout() -> None:
    settings = Settings(
        database_url="postgresql+asyncpg://appforge:appforge@db:5432/appforge",
        api_db_pool_size=0,
        api_db_max_overflow=-3,
        api_db_statement_timeout_ms=5000,
    )
    options = engine_options(settings)

    assert options["pool_size"] == 1
    assert options["max_overflow"] == 0
    assert options["connect_args"] == {"server_settings": {"statement_timeout": "5000"}}


def test_statement_timeout_is_optional() -> None:
    settings = Settings(
        database_url="postgresql+asyncpg://appforge:appforge@db:5432/appforge",
        api_db_statement_timeout_ms=0,
    )
    assert "connect_args" not in engine_options(settings)
