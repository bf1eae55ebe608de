from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.domain.builds import ACTIVE_STATUSES, BUILD_STATUS_QUEUED
from appforge.domain.models import BuildJob


async def create_job(
    session: AsyncSession,
    *,
    app_link_id: int,
    platform: str,
    ci_build_id: str | None = None,
    version_code: int | None = None,
    version_name: str | None = None,
    created_at: datetime | None = None,
) -> BuildJob:
    job = BuildJob(
        app_link_id=app_link_id,
        platform=platform,
        status=BUILD_STATUS_QUEUED,
        ci_build_id=ci_build_id,
        version_code=version_code,
        version_name=version_name,
    )
    if created_at is not None:
        job.created_at = created_at
    session.add(job)
    await session.flush()
    return job


async def get_job(session: AsyncSession, job_id: int) -> BuildJob | None:
    result = await session.execute(
        select(BuildJob).where(BuildJob.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_ci_build_id(session: AsyncSession, ci_build_id: str) -> BuildJob | None:
    # Always re-read persisted state; conditional updates bypass the identity map.
    result = await session.execute(
        select(BuildJob)
        .where(BuildJob.ci_build_id == ci_build_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition(
    session: AsyncSession,
    *,
    from_statuses: tuple[str, ...],
    values: dict[str, Any],
    ci_build_id: str | None = None,
    job_id: int | None = None,
) -> bool:
    """Apply ``values`` only if the row is still in one of ``from_statuses``.

    Returns True when this call won the transition. The status predicate in
    the WHERE clause makes concurrent callbacks race safely: exactly one
    terminal write can match.
    """
    if (ci_build_id is None) == (job_id is None):
        raise ValueError("Provide exactly one of ci_build_id or job_id")
    stmt = update(BuildJob).where(BuildJob.status.in_(from_statuses))
    if ci_build_id is not None:
        stmt = stmt.where(BuildJob.ci_build_id == ci_build_id)
    else:
        stmt = stmt.where(BuildJob.id == job_id)
    result = await session.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) > 0


async def set_ci_build_id(session: AsyncSession, job_id: int, ci_build_id: str) -> None:
    await session.execute(
        update(BuildJob)
        .where(BuildJob.id == job_id)
        .values(ci_build_id=ci_build_id)
        .execution_options(synchronize_session=False)
    )


async def latest_for_platform(session: AsyncSession, app_link_id: int, platform: str) -> BuildJob | None:
    result = await session.execute(
        select(BuildJob)
        .where(BuildJob.app_link_id == app_link_id, BuildJob.platform == platform)
        .order_by(BuildJob.created_at.desc(), BuildJob.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def latest_for_link(session: AsyncSession, app_link_id: int) -> BuildJob | None:
    result = await session.execute(
        select(BuildJob)
        .where(BuildJob.app_link_id == app_link_id)
        .order_by(BuildJob.created_at.desc(), BuildJob.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def recent_for_link(session: AsyncSession, app_link_id: int, *, limit: int = 20) -> list[BuildJob]:
    result = await session.execute(
        select(BuildJob)
        .where(BuildJob.app_link_id == app_link_id)
        .order_by(BuildJob.created_at.desc(), BuildJob.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def active_for_platform(session: AsyncSession, app_link_id: int, platform: str) -> list[BuildJob]:
    result = await session.execute(
        select(BuildJob)
        .where(
            BuildJob.app_link_id == app_link_id,
            BuildJob.platform == platform,
            BuildJob.status.in_(tuple(ACTIVE_STATUSES)),
        )
        .order_by(BuildJob.created_at, BuildJob.id)
    )
    return list(result.scalars().all())


async def list_stale_active(session: AsyncSession, *, created_before: datetime, limit: int = 500) -> list[BuildJob]:
    # Oldest first so a bounded sweep always makes progress on the backlog.
    result = await session.execute(
        select(BuildJob)
        .where(
            BuildJob.status.in_(tuple(ACTIVE_STATUSES)),
            BuildJob.created_at < created_before,
        )
        .order_by(BuildJob.created_at, BuildJob.id)
        .limit(limit)
    )
    return list(result.scalars().all())
