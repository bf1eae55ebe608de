from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Settings and the engine are built at import time, so point them at a throwaway
# sqlite file before any appforge module is loaded.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"appforge-test-{uuid4().hex}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["ENVIRONMENT"] = "test"
os.environ["CI_PROVIDER"] = "fake"
os.environ["CI_CALLBACK_TOKEN"] = "test-ci-secret"
os.environ["CI_CALLBACK_BASE_URL"] = "http://appforge.test/v1/ci"
os.environ["AUTH_JWT_SECRET"] = "appforge-test-jwt-secret-0123456789abcdef"
os.environ["CB_REDIS_ENABLED"] = "false"
os.environ["EXT_RETRY_BACKOFF_MS"] = "1"

import pytest  # noqa: E402

from appforge.core.config import get_settings  # noqa: E402
from appforge.domain.models import Base  # noqa: E402
from appforge.persistence.db import engine  # noqa: E402
from appforge.providers.ci.fake import reset_recorded_triggers  # noqa: E402
from appforge.services.resilience import reset_breakers  # noqa: E402
from appforge.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Build the schema per test and dispose the engine so no connection outlives its loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings, recorded CI triggers, breakers and counters are module-level; isolate them per test.
    get_settings.cache_clear()
    reset_recorded_triggers()
    reset_telemetry()
    reset_breakers()
    yield
    get_settings.cache_clear()


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)
