from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import ActiveBuildConflictError, InvalidBuildRequestError
from appforge.domain.builds import PLATFORM_ANDROID, normalize_platform
from appforge.domain.models import AppLink, BuildJob
from appforge.providers.ci.base import CiProvider, CiTrigger
from appforge.providers.ci.factory import get_ci_provider
from appforge.persistence.repos import build_jobs as build_jobs_repo
from appforge.services.audit import record_system_event
from appforge.services.builds import ledger
from appforge.services.builds.config_assembler import BuildConfigOverrides, assemble


logger = logging.getLogger(__name__)

SUPERSEDED_MESSAGE = "Superseded by a newer build"
POLICY_SUPERSEDE = "supersede"
POLICY_REJECT = "reject"


@dataclass(frozen=True)
class OwnerIdentity:
    # Forwarded to iOS signing steps on the CI side.
    email: str
    name: str


_last_stamp_ms = 0


def surrogate_build_id(link_id: int, platform: str) -> str:
    # <linkId>-<PLATFORM>-<epochMillis>; stamps never repeat within a process.
    global _last_stamp_ms
    stamp = max(int(time.time() * 1000), _last_stamp_ms + 1)
    _last_stamp_ms = stamp
    return f"{link_id}-{platform}-{stamp}"


def _platform_config(link: AppLink, platform: str, owner_identity: OwnerIdentity | None) -> dict[str, str]:
    if platform == PLATFORM_ANDROID:
        return {
            "PACKAGE_NAME": link.android_package_name or "",
            "VERSION_CODE": "" if link.android_version_code is None else str(link.android_version_code),
            "VERSION_NAME": link.android_version_name or "",
        }
    values = {
        "BUNDLE_ID": link.ios_bundle_id or "",
        "BUILD_NUMBER": "" if link.ios_build_number is None else str(link.ios_build_number),
        "VERSION_NAME": link.ios_version_name or "",
    }
    if owner_identity is not None:
        values["OWNER_EMAIL"] = owner_identity.email
        values["OWNER_NAME"] = owner_identity.name
    return values


def _version_meta(link: AppLink, platform: str) -> tuple[int | None, str | None]:
    if platform == PLATFORM_ANDROID:
        return link.android_version_code, link.android_version_name
    return link.ios_build_number, link.ios_version_name


async def ensure_dispatch_allowed(session: AsyncSession, link_id: int, platform: str) -> list[BuildJob]:
    """Return the non-terminal jobs for ``link_id``/``platform``.

    Under the ``reject`` policy an active job raises ``ActiveBuildConflictError``
    instead, so callers can check before bumping versions or dispatching.
    """
    active = await ledger.active_jobs(session, link_id, platform)
    if not active:
        return active
    policy = (get_settings().build_active_job_policy or POLICY_SUPERSEDE).lower()
    if policy == POLICY_REJECT:
        raise ActiveBuildConflictError(
            f"A {platform} build is already {active[-1].status} for app link {link_id}"
        )
    return active


async def _apply_active_job_policy(session: AsyncSession, link: AppLink, platform: str) -> None:
    for job in await ensure_dispatch_allowed(session, link.id, platform):
        outcome = await ledger.fail_job(session, job.id, SUPERSEDED_MESSAGE)
        if outcome.applied:
            logger.info("build_job_superseded job_id=%s link_id=%s platform=%s", job.id, link.id, platform)


async def dispatch(
    session: AsyncSession,
    link: AppLink,
    platform: str,
    overrides: BuildConfigOverrides | None = None,
    *,
    provider: CiProvider | None = None,
    owner_identity: OwnerIdentity | None = None,
) -> BuildJob:
    """Create a QUEUED build job for ``link`` and hand it off to CI.

    Always returns a persisted job: QUEUED when CI accepted the trigger,
    FAILED (with ``error`` and ``finished_at``) when it could not be reached.
    Invalid platforms or overrides raise before anything is written.
    """
    try:
        platform = normalize_platform(platform)
    except ValueError as exc:
        raise InvalidBuildRequestError(str(exc)) from exc
    settings = get_settings()
    snapshot = await assemble(session, link, overrides)

    await _apply_active_job_policy(session, link, platform)

    build_id = surrogate_build_id(link.id, platform)
    version_code, version_name = _version_meta(link, platform)
    job = await ledger.create_job(
        session,
        link,
        platform,
        ci_build_id=build_id,
        version_code=version_code,
        version_name=version_name,
    )

    config = snapshot.to_ci_config()
    config.update(_platform_config(link, platform, owner_identity))
    trigger = CiTrigger(
        build_id=build_id,
        platform=platform,
        event_type=(
            settings.ci_event_type_android if platform == PLATFORM_ANDROID else settings.ci_event_type_ios
        ),
        config=config,
        callback_base_url=settings.ci_callback_base_url,
        callback_token=settings.ci_callback_token,
    )

    try:
        ci_provider = provider or get_ci_provider()
        result = await ci_provider.trigger_build(trigger)
    except Exception as exc:  # noqa: BLE001 - any trigger failure must leave a terminal row
        message = str(exc) or exc.__class__.__name__
        logger.warning(
            "build_dispatch_failed job_id=%s link_id=%s platform=%s error=%s",
            job.id,
            link.id,
            platform,
            message,
        )
        outcome = await ledger.fail_job(session, job.id, f"Dispatch failed: {message}")
        await record_system_event(
            event_type="build.dispatch",
            outcome="failure",
            resource_type="build_job",
            resource_id=job.id,
            owner_id=link.owner_id,
            metadata={"link_id": link.id, "platform": platform, "ci_build_id": build_id},
            error_code="CI_DISPATCH_FAILED",
        )
        return outcome.job

    if result.ci_build_id and result.ci_build_id != build_id:
        await build_jobs_repo.set_ci_build_id(session, job.id, result.ci_build_id)
        await session.commit()
    refreshed = await build_jobs_repo.get_job(session, job.id)
    job = refreshed if refreshed is not None else job
    logger.info(
        "build_dispatched job_id=%s link_id=%s platform=%s ci_build_id=%s",
        job.id,
        link.id,
        platform,
        job.ci_build_id,
    )
    await record_system_event(
        event_type="build.dispatch",
        outcome="success",
        resource_type="build_job",
        resource_id=job.id,
        owner_id=link.owner_id,
        metadata={"link_id": link.id, "platform": platform, "ci_build_id": job.ci_build_id},
    )
    return job
