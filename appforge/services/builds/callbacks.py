from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import AppLinkNotFoundError, BuildJobNotFoundError, InvalidBuildRequestError
from appforge.domain.models import AppLink, BuildJob
from appforge.persistence.repos import app_links as app_links_repo
from appforge.services.audit import record_system_event
from appforge.services.builds import ledger
from appforge.services.builds.ledger import ArtifactUrls, TransitionOutcome
from appforge.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

ACK_APPLIED = "applied"
ACK_NOOP = "noop"
ACK_IGNORED = "ignored"


@dataclass(frozen=True)
class CallbackAck:
    ci_build_id: str
    status: str
    job: BuildJob | None = None


async def _apply(
    ci_build_id: str,
    event: str,
    action: Callable[[], Awaitable[TransitionOutcome]],
) -> CallbackAck:
    increment_counter(f"build_callbacks_total.{event}")
    try:
        outcome = await action()
    except BuildJobNotFoundError:
        # Late or duplicate callbacks for unknown jobs never mutate anything.
        increment_counter("build_callbacks_unknown_total")
        if get_settings().ci_callback_accept_unknown:
            logger.info("build_callback_unknown_ignored event=%s ci_build_id=%s", event, ci_build_id)
            return CallbackAck(ci_build_id=ci_build_id, status=ACK_IGNORED)
        logger.info("build_callback_unknown event=%s ci_build_id=%s", event, ci_build_id)
        raise
    job = outcome.job
    if outcome.applied:
        await record_system_event(
            event_type=f"build.callback.{event}",
            resource_type="build_job",
            resource_id=job.id,
            metadata={"ci_build_id": ci_build_id, "platform": job.platform, "status": job.status},
        )
    return CallbackAck(
        ci_build_id=ci_build_id,
        status=ACK_APPLIED if outcome.applied else ACK_NOOP,
        job=job,
    )


async def handle_running(session: AsyncSession, ci_build_id: str) -> CallbackAck:
    return await _apply(ci_build_id, "running", lambda: ledger.mark_running(session, ci_build_id))


async def handle_failed(session: AsyncSession, ci_build_id: str, error: str | None) -> CallbackAck:
    return await _apply(ci_build_id, "failed", lambda: ledger.mark_failed(session, ci_build_id, error))


async def handle_succeeded(
    session: AsyncSession, ci_build_id: str, artifacts: ArtifactUrls
) -> CallbackAck:
    return await _apply(
        ci_build_id, "succeeded", lambda: ledger.mark_succeeded(session, ci_build_id, artifacts)
    )


async def apply_link_artifacts(session: AsyncSession, link: AppLink, artifacts: ArtifactUrls) -> AppLink:
    """Write delivered artifact URLs onto a link without touching any build job."""
    written = await app_links_repo.write_artifacts(
        session,
        link.id,
        apk_url=artifacts.apk_url,
        bundle_url=artifacts.bundle_url,
        ipa_url=artifacts.ipa_url,
    )
    await session.commit()
    refreshed = await app_links_repo.get_link(session, link.id)
    if written:
        logger.info("app_link_artifacts_updated link_id=%s", link.id)
    return refreshed if refreshed is not None else link


async def set_apk_url(
    session: AsyncSession, owner_id: int, project_id: int, slug: str, apk_url: str | None
) -> AppLink:
    if apk_url is None or not apk_url.strip():
        raise InvalidBuildRequestError("apkUrl is required")
    link = await app_links_repo.get_link_by_slug(session, owner_id, project_id, slug)
    if link is None:
        raise AppLinkNotFoundError(f"App link not found for {owner_id}/{project_id}/{slug}")
    increment_counter("build_callbacks_total.apk_url")
    link = await apply_link_artifacts(session, link, ArtifactUrls(apk_url=apk_url.strip()))
    await record_system_event(
        event_type="build.callback.apk_url",
        resource_type="app_link",
        resource_id=link.id,
        owner_id=link.owner_id,
        metadata={"slug": slug, "project_id": project_id},
    )
    return link
