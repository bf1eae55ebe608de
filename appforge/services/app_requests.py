from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import (
    AppRequestNotFoundError,
    AppRequestStateError,
    InvalidBuildRequestError,
)
from appforge.domain.app_requests import (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
    normalize_request_status,
)
from appforge.domain.builds import LINK_STATUS_ACTIVE, PLATFORM_ANDROID
from appforge.domain.models import AppLink, AppRequest, BuildJob
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import app_requests as app_requests_repo
from appforge.persistence.repos import catalog as catalog_repo
from appforge.persistence.repos import runtime_configs as runtime_configs_repo
from appforge.providers.ci.base import CiProvider
from appforge.services.audit import record_system_event
from appforge.services.builds.config_assembler import BuildConfigOverrides
from appforge.services.builds.dispatcher import dispatch
from appforge.services.builds.theme_json import ThemePalette, build_theme_json
from appforge.services.builds.versioning import android_package_name, ios_bundle_id


logger = logging.getLogger(__name__)

DEFAULT_SLUG = "app"
MAX_SLUG_SUFFIX = 500

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class AppRequestDraft:
    owner_id: int
    project_id: int
    app_name: str
    slug: str | None = None
    logo_url: str | None = None
    theme_id: int | None = None
    palette: ThemePalette | None = None
    currency_id: int | None = None
    notes: str | None = None


@dataclass
class ProvisionOutcome:
    request: AppRequest
    link: AppLink
    jobs: dict[str, BuildJob] = field(default_factory=dict)

    @property
    def job(self) -> BuildJob | None:
        return self.jobs.get(PLATFORM_ANDROID)


def slugify(value: str | None) -> str:
    if value is None:
        return DEFAULT_SLUG
    slug = _NON_SLUG_CHARS.sub("-", value.strip().lower()).strip("-")
    return slug or DEFAULT_SLUG


async def ensure_unique_slug(
    session: AsyncSession,
    owner_id: int,
    project_id: int,
    base: str,
    *,
    include_pending: bool = True,
) -> str:
    """Return ``base`` or the first free ``base-N`` for the owner/project pair."""
    base = base or DEFAULT_SLUG

    async def _taken(candidate: str) -> bool:
        if await app_links_repo.slug_exists(session, owner_id, project_id, candidate):
            return True
        if include_pending:
            return await app_requests_repo.slug_reserved(session, owner_id, project_id, candidate)
        return False

    if not await _taken(base):
        return base
    for suffix in range(2, MAX_SLUG_SUFFIX + 1):
        candidate = f"{base}-{suffix}"
        if not await _taken(candidate):
            return candidate
    raise InvalidBuildRequestError(f"Could not generate a unique slug for {base}")


async def _validate_draft(session: AsyncSession, draft: AppRequestDraft) -> None:
    if not draft.app_name or not draft.app_name.strip():
        raise InvalidBuildRequestError("appName is required")
    if await catalog_repo.get_project(session, draft.project_id) is None:
        raise InvalidBuildRequestError(f"Project not found: {draft.project_id}")
    if draft.currency_id is not None and await catalog_repo.get_currency(session, draft.currency_id) is None:
        raise InvalidBuildRequestError(f"Currency not found: {draft.currency_id}")


async def create_request(session: AsyncSession, draft: AppRequestDraft) -> AppRequest:
    await _validate_draft(session, draft)
    slug = await ensure_unique_slug(
        session, draft.owner_id, draft.project_id, slugify(draft.slug or draft.app_name)
    )
    theme_id = draft.theme_id
    if theme_id is None and draft.palette is not None:
        # Owners may send raw colors instead of picking a catalog theme.
        theme = await catalog_repo.create_theme(
            session, name=draft.app_name.strip(), theme_json=build_theme_json(draft.palette)
        )
        theme_id = theme.id
    request = await app_requests_repo.create_request(
        session,
        owner_id=draft.owner_id,
        project_id=draft.project_id,
        app_name=draft.app_name.strip(),
        slug=slug,
        logo_url=draft.logo_url,
        theme_id=theme_id,
        currency_id=draft.currency_id,
        notes=draft.notes,
    )
    await session.commit()
    logger.info(
        "app_request_created request_id=%s owner_id=%s project_id=%s slug=%s",
        request.id,
        draft.owner_id,
        draft.project_id,
        slug,
    )
    await record_system_event(
        event_type="app_request.created",
        resource_type="app_request",
        resource_id=request.id,
        owner_id=draft.owner_id,
        metadata={"project_id": draft.project_id, "slug": slug},
    )
    return request


async def _require_pending(session: AsyncSession, request_id: int) -> AppRequest:
    request = await app_requests_repo.get_request(session, request_id)
    if request is None:
        raise AppRequestNotFoundError(f"App request not found: {request_id}")
    if request.status != REQUEST_STATUS_PENDING:
        raise AppRequestStateError(f"App request {request_id} is already {request.status}")
    return request


async def _resolve_theme_id(session: AsyncSession, requested: int | None) -> int | None:
    if requested is not None and await catalog_repo.get_theme(session, requested) is not None:
        return requested
    active = await catalog_repo.get_active_theme(session)
    return active.id if active is not None else None


async def _provision_link(
    session: AsyncSession, request: AppRequest, overrides: BuildConfigOverrides
) -> AppLink:
    settings = get_settings()
    # The pending reservation belongs to this request; only live links can collide now.
    slug = await ensure_unique_slug(
        session, request.owner_id, request.project_id, request.slug, include_pending=False
    )
    now = datetime.now(timezone.utc)
    link = await app_links_repo.create_link(
        session,
        owner_id=request.owner_id,
        project_id=request.project_id,
        slug=slug,
        app_name=request.app_name,
        status=LINK_STATUS_ACTIVE,
        license_id=f"LIC-{uuid.uuid4().hex}",
        valid_from=now,
        end_to=now + timedelta(days=settings.app_validity_days),
        theme_id=await _resolve_theme_id(session, request.theme_id),
        currency_id=request.currency_id,
        logo_url=request.logo_url,
    )
    await app_links_repo.ensure_identifiers(
        session,
        link.id,
        android_package_name=android_package_name(settings.android_package_prefix, link.id),
        ios_bundle_id=ios_bundle_id(settings.ios_bundle_prefix, link.id),
    )
    await app_links_repo.bump_version(session, link.id, PLATFORM_ANDROID)
    await app_links_repo.reset_artifacts(session, link.id)
    if not overrides.is_empty():
        await runtime_configs_repo.upsert(
            session,
            app_link_id=link.id,
            nav_json=overrides.nav_json,
            home_json=overrides.home_json,
            enabled_features_json=overrides.enabled_features_json,
            branding_json=overrides.branding_json,
            api_base_url_override=overrides.api_base_url_override,
        )
    request.status = REQUEST_STATUS_APPROVED
    request.app_link_id = link.id
    request.decided_at = now
    request.slug = slug
    return link


async def approve_request(
    session: AsyncSession,
    request_id: int,
    *,
    overrides: BuildConfigOverrides | None = None,
    provider: CiProvider | None = None,
) -> ProvisionOutcome:
    """Provision an app link for a pending request and dispatch its first Android build.

    The link is committed before the dispatch. A CI outage leaves an approved
    request whose job is FAILED; the owner can retry through a rebuild.
    """
    overrides = overrides or BuildConfigOverrides()
    overrides.validate()
    request = await _require_pending(session, request_id)
    link = await _provision_link(session, request, overrides)
    await session.commit()
    link = await app_links_repo.get_link(session, link.id) or link
    logger.info("app_request_approved request_id=%s link_id=%s slug=%s", request.id, link.id, link.slug)
    await record_system_event(
        event_type="app_request.approved",
        resource_type="app_request",
        resource_id=request.id,
        owner_id=request.owner_id,
        metadata={"link_id": link.id, "slug": link.slug},
    )
    job = await dispatch(session, link, PLATFORM_ANDROID, provider=provider)
    link = await app_links_repo.get_link(session, link.id) or link
    return ProvisionOutcome(request=request, link=link, jobs={PLATFORM_ANDROID: job})


async def reject_request(session: AsyncSession, request_id: int, reason: str | None = None) -> AppRequest:
    request = await _require_pending(session, request_id)
    request.status = REQUEST_STATUS_REJECTED
    request.decided_at = datetime.now(timezone.utc)
    if reason and reason.strip():
        request.notes = f"{request.notes}\nRejected: {reason.strip()}" if request.notes else f"Rejected: {reason.strip()}"
    await session.commit()
    logger.info("app_request_rejected request_id=%s", request.id)
    await record_system_event(
        event_type="app_request.rejected",
        resource_type="app_request",
        resource_id=request.id,
        owner_id=request.owner_id,
        metadata={"reason": reason},
    )
    return request


async def create_and_auto_approve(
    session: AsyncSession,
    draft: AppRequestDraft,
    *,
    overrides: BuildConfigOverrides | None = None,
    provider: CiProvider | None = None,
) -> ProvisionOutcome:
    overrides = overrides or BuildConfigOverrides()
    overrides.validate()
    request = await create_request(session, draft)
    return await approve_request(session, request.id, overrides=overrides, provider=provider)


async def list_requests_for_owner(session: AsyncSession, owner_id: int) -> list[AppRequest]:
    return await app_requests_repo.list_for_owner(session, owner_id)


async def list_links_for_owner(session: AsyncSession, owner_id: int) -> list[AppLink]:
    return await app_links_repo.list_links_for_owner(session, owner_id)


async def list_pending_requests(session: AsyncSession) -> list[AppRequest]:
    return await app_requests_repo.list_by_status(session, REQUEST_STATUS_PENDING)


async def list_requests_by_status(session: AsyncSession, status: str) -> list[AppRequest]:
    return await app_requests_repo.list_by_status(session, normalize_request_status(status))
