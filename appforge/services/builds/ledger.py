"""Build job ledger: the authoritative record of build attempts.

Every state change is one conditional UPDATE keyed by ``ci_build_id`` (or by
primary key for internal failures) whose WHERE clause pins the allowed source
statuses. Duplicate and out-of-order callbacks therefore resolve to no-ops,
and the first terminal write wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.errors import BuildJobNotFoundError
from appforge.domain.builds import (
    BUILD_STATUS_FAILED,
    BUILD_STATUS_RUNNING,
    BUILD_STATUS_SUCCEEDED,
    DEFAULT_FAILURE_MESSAGE,
    PLATFORM_ARTIFACT_FIELDS,
    source_statuses,
)
from appforge.domain.models import AppLink, BuildJob
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import build_jobs as build_jobs_repo
from appforge.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArtifactUrls:
    apk_url: str | None = None
    bundle_url: str | None = None
    ipa_url: str | None = None

    def for_platform(self, platform: str) -> dict[str, str]:
        # Drop blanks and artifacts that do not belong to the job's platform.
        allowed = PLATFORM_ARTIFACT_FIELDS.get(platform, ())
        values: dict[str, str] = {}
        for field_name in allowed:
            value = getattr(self, field_name)
            if value is not None and value.strip():
                values[field_name] = value.strip()
        return values


@dataclass(frozen=True)
class TransitionOutcome:
    job: BuildJob
    applied: bool


async def create_job(
    session: AsyncSession,
    link: AppLink,
    platform: str,
    *,
    ci_build_id: str | None = None,
    version_code: int | None = None,
    version_name: str | None = None,
) -> BuildJob:
    job = await build_jobs_repo.create_job(
        session,
        app_link_id=link.id,
        platform=platform,
        ci_build_id=ci_build_id,
        version_code=version_code,
        version_name=version_name,
    )
    await session.commit()
    increment_counter(f"build_jobs_created_total.{platform}")
    logger.info(
        "build_job_created job_id=%s link_id=%s platform=%s ci_build_id=%s",
        job.id,
        link.id,
        platform,
        ci_build_id,
    )
    return job


async def _require_job(session: AsyncSession, ci_build_id: str) -> BuildJob:
    job = await build_jobs_repo.get_by_ci_build_id(session, ci_build_id)
    if job is None:
        raise BuildJobNotFoundError(f"Build job not found for ciBuildId={ci_build_id}")
    return job


async def _reload(session: AsyncSession, job: BuildJob) -> BuildJob:
    fresh = await build_jobs_repo.get_job(session, job.id)
    return fresh if fresh is not None else job


async def mark_running(session: AsyncSession, ci_build_id: str) -> TransitionOutcome:
    job = await _require_job(session, ci_build_id)
    now = _utc_now()
    applied = await build_jobs_repo.transition(
        session,
        ci_build_id=ci_build_id,
        from_statuses=source_statuses(BUILD_STATUS_RUNNING),
        values={
            "status": BUILD_STATUS_RUNNING,
            # started_at is written once; a replay can never move it.
            "started_at": func.coalesce(BuildJob.started_at, now),
            "updated_at": now,
        },
    )
    await session.commit()
    job = await _reload(session, job)
    if applied:
        logger.info("build_job_running job_id=%s ci_build_id=%s", job.id, ci_build_id)
    else:
        increment_counter("build_callbacks_noop_total.running")
        logger.info("build_job_running_noop job_id=%s ci_build_id=%s status=%s", job.id, ci_build_id, job.status)
    return TransitionOutcome(job=job, applied=applied)


async def mark_failed(
    session: AsyncSession, ci_build_id: str, error: str | None = None
) -> TransitionOutcome:
    job = await _require_job(session, ci_build_id)
    message = error.strip() if error and error.strip() else DEFAULT_FAILURE_MESSAGE
    now = _utc_now()
    applied = await build_jobs_repo.transition(
        session,
        ci_build_id=ci_build_id,
        from_statuses=source_statuses(BUILD_STATUS_FAILED),
        values={"status": BUILD_STATUS_FAILED, "finished_at": now, "error": message, "updated_at": now},
    )
    await session.commit()
    job = await _reload(session, job)
    if applied:
        increment_counter(f"build_jobs_failed_total.{job.platform}")
        logger.warning("build_job_failed job_id=%s ci_build_id=%s error=%s", job.id, ci_build_id, message)
    else:
        increment_counter("build_callbacks_noop_total.failed")
        logger.info("build_job_failed_noop job_id=%s ci_build_id=%s status=%s", job.id, ci_build_id, job.status)
    return TransitionOutcome(job=job, applied=applied)


async def mark_succeeded(
    session: AsyncSession, ci_build_id: str, artifacts: ArtifactUrls
) -> TransitionOutcome:
    job = await _require_job(session, ci_build_id)
    artifact_values = artifacts.for_platform(job.platform)
    now = _utc_now()
    applied = await build_jobs_repo.transition(
        session,
        ci_build_id=ci_build_id,
        from_statuses=source_statuses(BUILD_STATUS_SUCCEEDED),
        values={"status": BUILD_STATUS_SUCCEEDED, "finished_at": now, "updated_at": now, **artifact_values},
    )
    if applied and artifact_values:
        # Same transaction as the job transition: the link only sees artifacts of a winning success.
        await app_links_repo.write_artifacts(session, job.app_link_id, **artifact_values)
    await session.commit()
    job = await _reload(session, job)
    if applied:
        increment_counter(f"build_jobs_succeeded_total.{job.platform}")
        logger.info(
            "build_job_succeeded job_id=%s ci_build_id=%s artifacts=%s",
            job.id,
            ci_build_id,
            ",".join(sorted(artifact_values)) or "none",
        )
    else:
        increment_counter("build_callbacks_noop_total.succeeded")
        logger.info("build_job_succeeded_noop job_id=%s ci_build_id=%s status=%s", job.id, ci_build_id, job.status)
    return TransitionOutcome(job=job, applied=applied)


async def fail_job(session: AsyncSession, job_id: int, error: str) -> TransitionOutcome:
    """Fail a job by primary key (dispatch errors, supersede, timeouts)."""
    now = _utc_now()
    applied = await build_jobs_repo.transition(
        session,
        job_id=job_id,
        from_statuses=source_statuses(BUILD_STATUS_FAILED),
        values={"status": BUILD_STATUS_FAILED, "finished_at": now, "error": error, "updated_at": now},
    )
    await session.commit()
    job = await build_jobs_repo.get_job(session, job_id)
    if job is None:
        raise BuildJobNotFoundError(f"Build job not found: {job_id}")
    if applied:
        increment_counter(f"build_jobs_failed_total.{job.platform}")
        logger.warning("build_job_failed job_id=%s error=%s", job_id, error)
    return TransitionOutcome(job=job, applied=applied)


async def latest_job(session: AsyncSession, link_id: int, platform: str) -> BuildJob | None:
    return await build_jobs_repo.latest_for_platform(session, link_id, platform)


async def latest_job_any(session: AsyncSession, link_id: int) -> BuildJob | None:
    return await build_jobs_repo.latest_for_link(session, link_id)


async def recent_jobs(session: AsyncSession, link_id: int, *, limit: int = 20) -> list[BuildJob]:
    return await build_jobs_repo.recent_for_link(session, link_id, limit=limit)


async def active_jobs(session: AsyncSession, link_id: int, platform: str) -> list[BuildJob]:
    return await build_jobs_repo.active_for_platform(session, link_id, platform)
