from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.persistence.repos import build_jobs as build_jobs_repo
from appforge.services.audit import record_system_event
from appforge.services.builds import ledger
from appforge.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Build timed out"


async def expire_stuck_jobs(
    session: AsyncSession, older_than_minutes: int, *, limit: int = 500
) -> list[int]:
    """Fail QUEUED/RUNNING jobs created before the cutoff; returns the failed job ids."""
    if older_than_minutes <= 0:
        raise ValueError("older_than_minutes must be positive")
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    stale = await build_jobs_repo.list_stale_active(session, created_before=cutoff, limit=limit)
    expired: list[int] = []
    for job in stale:
        # A callback may land between the scan and this write; the conditional update decides.
        outcome = await ledger.fail_job(session, job.id, TIMEOUT_MESSAGE)
        if outcome.applied:
            expired.append(job.id)
    set_gauge("build_jobs_stuck_last_sweep", float(len(expired)))
    if expired:
        increment_counter("build_jobs_timed_out_total", len(expired))
        await record_system_event(
            event_type="build.sweep",
            resource_type="build_job",
            metadata={"expired_job_ids": expired, "older_than_minutes": older_than_minutes},
        )
    logger.info(
        "build_sweep_complete scanned=%s expired=%s older_than_minutes=%s",
        len(stale),
        len(expired),
        older_than_minutes,
    )
    return expired
