from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from appforge.core.config import get_settings
from appforge.core.logging import configure_logging
from appforge.persistence.db import get_session
from appforge.services.builds.manifest import refresh_active_links
from appforge.services.builds.sweeper import expire_stuck_jobs


logger = logging.getLogger(__name__)


async def refresh_manifests(ctx) -> dict[str, int]:
    # Catch artifacts published by CI runs whose callbacks never arrived.
    async with get_session() as session:
        return await refresh_active_links(session)


async def sweep_stuck_builds(ctx) -> int:
    settings = get_settings()
    async with get_session() as session:
        expired = await expire_stuck_jobs(session, settings.build_stuck_after_minutes)
    return len(expired)


def _every(minutes: int) -> set[int]:
    step = max(1, min(int(minutes), 60))
    return set(range(0, 60, step))


def _cron_jobs() -> list:
    settings = get_settings()
    jobs = []
    if settings.manifest_refresh_enabled:
        jobs.append(cron(refresh_manifests, minute=_every(settings.manifest_refresh_minutes), run_at_startup=False))
    if settings.build_sweep_enabled:
        # Sweeping every five minutes keeps timeouts within a few minutes of the configured window.
        jobs.append(cron(sweep_stuck_builds, minute=_every(5), run_at_startup=True))
    return jobs


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("build_worker_started queue=%s", get_settings().build_queue_name)


async def _shutdown(ctx) -> None:
    logger.info("build_worker_stopped")


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.build_queue_name
    functions = [refresh_manifests, sweep_stuck_builds]
    cron_jobs = _cron_jobs()
    on_startup = _startup
    on_shutdown = _shutdown
