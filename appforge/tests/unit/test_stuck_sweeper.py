from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from appforge.domain.builds import (
    BUILD_STATUS_FAILED,
    BUILD_STATUS_QUEUED,
    BUILD_STATUS_RUNNING,
    BUILD_STATUS_SUCCEEDED,
)
from appforge.domain.models import AuditEvent
from appforge.persistence.db import SessionLocal
from appforge.services.builds.sweeper import TIMEOUT_MESSAGE, expire_stuck_jobs
from appforge.services.telemetry import counters_snapshot, gauges_snapshot
from appforge.tests.utils.seed import create_job, fetch_job, seed_app
from appforge.workers.build_worker import _every, sweep_stuck_builds


def _hours_ago(hours: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


@pytest.mark.asyncio
async def test_sweep_fails_only_old_active_jobs() -> None:
    seeded = await seed_app()
    old_queued = await create_job(seeded.link_id, created_at=_hours_ago(3))
    old_running = await create_job(
        seeded.link_id, platform="IOS", status=BUILD_STATUS_RUNNING, created_at=_hours_ago(2)
    )
    old_done = await create_job(seeded.link_id, status=BUILD_STATUS_SUCCEEDED, created_at=_hours_ago(5))
    fresh = await create_job(seeded.link_id)

    async with SessionLocal() as session:
        expired = await expire_stuck_jobs(session, 90)

    assert expired == [old_queued, old_running]
    for job_id in (old_queued, old_running):
        job = await fetch_job(job_id)
        assert job.status == BUILD_STATUS_FAILED
        assert job.error == TIMEOUT_MESSAGE
        assert job.finished_at is not None
    assert (await fetch_job(old_done)).status == BUILD_STATUS_SUCCEEDED
    assert (await fetch_job(fresh)).status == BUILD_STATUS_QUEUED

    assert gauges_snapshot()["build_jobs_stuck_last_sweep"] == 2.0
    assert counters_snapshot()["build_jobs_timed_out_total"] == 2
    async with SessionLocal() as session:
        events = (
            await session.execute(select(AuditEvent).where(AuditEvent.event_type == "build.sweep"))
        ).scalars().all()
    assert len(events) == 1


@pytest.mark.asyncio
async def test_empty_sweep_records_zero_gauge() -> None:
    seeded = await seed_app()
    await create_job(seeded.link_id)

    async with SessionLocal() as session:
        assert await expire_stuck_jobs(session, 90) == []

    assert gauges_snapshot()["build_jobs_stuck_last_sweep"] == 0.0
    assert "build_jobs_timed_out_total" not in counters_snapshot()


@pytest.mark.asyncio
async def test_sweep_rejects_non_positive_window() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ValueError):
            await expire_stuck_jobs(session, 0)


@pytest.mark.asyncio
async def test_worker_sweep_uses_configured_window() -> None:
    seeded = await seed_app()
    await create_job(seeded.link_id, created_at=_hours_ago(2))
    await create_job(seeded.link_id, created_at=_hours_ago(1))

    # Default window is ninety minutes, so only the two-hour-old job times out.
    assert await sweep_stuck_builds({}) == 1


def test_cron_minutes_are_clamped() -> None:
    assert _every(5) == {0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}
    assert _every(90) == {0}
    assert _every(0) == set(range(60))
