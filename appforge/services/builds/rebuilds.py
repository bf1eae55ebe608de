from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import AppLinkNotFoundError, ForbiddenError, InvalidBuildRequestError
from appforge.domain.builds import PLATFORM_ANDROID, PLATFORM_IOS, normalize_platform
from appforge.domain.models import AppLink, BuildJob
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import catalog as catalog_repo
from appforge.providers.ci.base import CiProvider
from appforge.services.builds.config_assembler import BuildConfigOverrides
from appforge.services.builds.dispatcher import OwnerIdentity, dispatch, ensure_dispatch_allowed
from appforge.services.builds.versioning import android_package_name, ios_bundle_id


logger = logging.getLogger(__name__)

UNKNOWN_OWNER_EMAIL = "owner@unknown"
UNKNOWN_OWNER_NAME = "Owner"


@dataclass
class RebuildOutcome:
    link: AppLink
    jobs: dict[str, BuildJob] = field(default_factory=dict)


async def _require_link(session: AsyncSession, link_id: int) -> AppLink:
    link = await app_links_repo.get_link(session, link_id)
    if link is None:
        raise AppLinkNotFoundError(f"App link not found: {link_id}")
    return link


async def resolve_owner_identity(session: AsyncSession, link: AppLink) -> OwnerIdentity:
    owner = await catalog_repo.get_owner(session, link.owner_id)
    email = owner.email.strip() if owner and owner.email and owner.email.strip() else UNKNOWN_OWNER_EMAIL
    if owner and owner.display_name and owner.display_name.strip():
        name = owner.display_name.strip()
    elif owner and owner.email and owner.email.strip():
        name = email
    else:
        name = UNKNOWN_OWNER_NAME
    return OwnerIdentity(email=email, name=name)


async def prepare_platform(session: AsyncSession, link_id: int, platform: str, *, bump_version: bool) -> AppLink:
    """Ensure platform identifiers exist and optionally reserve the next version.

    Committed before dispatch: a reserved version is never handed back, even
    if the build that uses it fails.
    """
    settings = get_settings()
    if platform == PLATFORM_ANDROID:
        await app_links_repo.ensure_identifiers(
            session, link_id, android_package_name=android_package_name(settings.android_package_prefix, link_id)
        )
    else:
        await app_links_repo.ensure_identifiers(
            session, link_id, ios_bundle_id=ios_bundle_id(settings.ios_bundle_prefix, link_id)
        )
    if bump_version:
        code, name = await app_links_repo.bump_version(session, link_id, platform)
        logger.info("app_link_version_bumped link_id=%s platform=%s code=%s name=%s", link_id, platform, code, name)
    await session.commit()
    return await _require_link(session, link_id)


async def owner_rebuild(
    session: AsyncSession,
    link_id: int,
    owner_id: int,
    *,
    is_super_admin: bool = False,
    provider: CiProvider | None = None,
) -> BuildJob:
    """Self-service retry of the Android build with the stored configuration."""
    link = await _require_link(session, link_id)
    if link.owner_id != owner_id and not is_super_admin:
        raise ForbiddenError("App link does not belong to the caller")
    await ensure_dispatch_allowed(session, link.id, PLATFORM_ANDROID)
    link = await prepare_platform(session, link.id, PLATFORM_ANDROID, bump_version=False)
    return await dispatch(session, link, PLATFORM_ANDROID, provider=provider)


async def admin_rebuild(
    session: AsyncSession,
    link_id: int,
    platform: str,
    *,
    bump_version: bool = True,
    overrides: BuildConfigOverrides | None = None,
    provider: CiProvider | None = None,
) -> RebuildOutcome:
    try:
        platform = normalize_platform(platform)
    except ValueError as exc:
        raise InvalidBuildRequestError(str(exc)) from exc
    overrides = overrides or BuildConfigOverrides()
    # Validate before the bump so a bad override never burns a version number.
    overrides.validate()
    link = await _require_link(session, link_id)
    identity = await resolve_owner_identity(session, link)
    # Reject-policy conflicts surface before the bump is committed.
    await ensure_dispatch_allowed(session, link.id, platform)
    link = await prepare_platform(session, link.id, platform, bump_version=bump_version)
    job = await dispatch(session, link, platform, overrides, provider=provider, owner_identity=identity)
    link = await _require_link(session, link.id)
    logger.info(
        "admin_rebuild_dispatched link_id=%s platform=%s bump=%s job_id=%s status=%s",
        link.id,
        platform,
        bump_version,
        job.id,
        job.status,
    )
    return RebuildOutcome(link=link, jobs={platform: job})


async def admin_rebuild_both(
    session: AsyncSession,
    link_id: int,
    *,
    bump_android: bool = True,
    bump_ios: bool = True,
    overrides: BuildConfigOverrides | None = None,
    provider: CiProvider | None = None,
) -> RebuildOutcome:
    overrides = overrides or BuildConfigOverrides()
    overrides.validate()
    link = await _require_link(session, link_id)
    identity = await resolve_owner_identity(session, link)
    platforms = ((PLATFORM_ANDROID, bump_android), (PLATFORM_IOS, bump_ios))
    # Check both platforms before any bump or dispatch.
    for platform, _ in platforms:
        await ensure_dispatch_allowed(session, link.id, platform)
    jobs: dict[str, BuildJob] = {}
    for platform, bump in platforms:
        link = await prepare_platform(session, link.id, platform, bump_version=bump)
        jobs[platform] = await dispatch(
            session, link, platform, overrides, provider=provider, owner_identity=identity
        )
    link = await _require_link(session, link.id)
    return RebuildOutcome(link=link, jobs=jobs)
