"""Pull-based artifact delivery for CI runs that publish a manifest file.

The CI workflow commits ``builds/<owner>/<project>/<slug>/latest.json`` to the
build repository when it cannot reach the callback endpoint. Pulling that file
applies the same writes a push callback would.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import AppLinkNotFoundError, ManifestFetchError
from appforge.domain.models import AppLink
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import build_jobs as build_jobs_repo
from appforge.services.builds import ledger
from appforge.services.builds.callbacks import apply_link_artifacts
from appforge.services.builds.ledger import ArtifactUrls
from appforge.services.resilience import CI_MANIFEST, retry_async
from appforge.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


REASON_UPDATED = "updated"
REASON_NOT_PUBLISHED = "manifest_not_published"
REASON_UNCHANGED = "unchanged"
REASON_NO_ARTIFACTS = "no_artifacts"


@dataclass(frozen=True)
class BuildManifest:
    apk_url: str | None = None
    bundle_url: str | None = None
    ipa_url: str | None = None
    build_id: str | None = None

    def artifacts(self) -> ArtifactUrls:
        return ArtifactUrls(apk_url=self.apk_url, bundle_url=self.bundle_url, ipa_url=self.ipa_url)

    def is_empty(self) -> bool:
        return not (self.apk_url or self.bundle_url or self.ipa_url)


@dataclass(frozen=True)
class ManifestPullResult:
    link: AppLink
    updated: bool
    reason: str
    manifest_url: str

    @property
    def apk_url(self) -> str | None:
        return self.link.apk_url


def _text(payload: dict[str, Any], *keys: str) -> str | None:
    # Accept several spellings; anything missing or non-string leaves the field unchanged.
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
    return None


def parse_manifest(payload: Any) -> BuildManifest:
    if not isinstance(payload, dict):
        return BuildManifest()
    return BuildManifest(
        apk_url=_text(payload, "apkUrl", "apk_url"),
        bundle_url=_text(payload, "bundleUrl", "aabUrl", "bundle_url"),
        ipa_url=_text(payload, "ipaUrl", "ipa_url"),
        build_id=_text(payload, "buildId", "ciBuildId", "build_id"),
    )


def manifest_url(owner_id: int, project_id: int, slug: str) -> str:
    settings = get_settings()
    base = settings.manifest_base_url or (
        f"https://raw.githubusercontent.com/{settings.ci_repo_owner}"
        f"/{settings.ci_repo_name}/{settings.ci_repo_branch}"
    )
    return f"{base.rstrip('/')}/builds/{owner_id}/{project_id}/{slug.lower()}/latest.json"


def _artifact_state(link: AppLink) -> tuple[str | None, str | None, str | None]:
    return link.apk_url, link.bundle_url, link.ipa_url


class ManifestPoller:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        # An injected client belongs to the caller; otherwise open one per fetch.
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._settings.manifest_timeout_ms / 1000.0) as client:
            yield client

    async def fetch(self, url: str) -> BuildManifest | None:
        """Return the parsed manifest, or None when it is not published yet."""
        start = time.monotonic()
        try:
            async with self._client_scope() as client:

                async def _call() -> httpx.Response:
                    return await client.get(url, headers={"Accept": "application/json"})

                response = await retry_async(_call, integration=CI_MANIFEST)
        except (httpx.HTTPError, TimeoutError) as exc:
            record_external_call(
                integration=CI_MANIFEST, latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise ManifestFetchError(f"Manifest fetch failed: {exc.__class__.__name__}") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code == 404:
            record_external_call(integration=CI_MANIFEST, latency_ms=latency_ms, success=True)
            return None
        if response.status_code >= 400:
            record_external_call(integration=CI_MANIFEST, latency_ms=latency_ms, success=False)
            raise ManifestFetchError(f"Manifest fetch failed: HTTP {response.status_code}")
        record_external_call(integration=CI_MANIFEST, latency_ms=latency_ms, success=True)
        if not response.content or not response.text.strip():
            return None
        try:
            payload = json.loads(response.text)
        except ValueError as exc:
            raise ManifestFetchError("Manifest is not valid JSON") from exc
        return parse_manifest(payload)

    async def pull(
        self, session: AsyncSession, owner_id: int, project_id: int, slug: str
    ) -> ManifestPullResult:
        link = await app_links_repo.get_link_by_slug(session, owner_id, project_id, slug.lower())
        if link is None:
            raise AppLinkNotFoundError(f"App link not found for {owner_id}/{project_id}/{slug}")
        url = manifest_url(owner_id, project_id, slug)
        manifest = await self.fetch(url)
        if manifest is None:
            increment_counter("manifest_pulls_total.not_published")
            logger.info("manifest_not_published link_id=%s url=%s", link.id, url)
            return ManifestPullResult(link=link, updated=False, reason=REASON_NOT_PUBLISHED, manifest_url=url)
        if manifest.is_empty():
            increment_counter("manifest_pulls_total.no_artifacts")
            return ManifestPullResult(link=link, updated=False, reason=REASON_NO_ARTIFACTS, manifest_url=url)

        before = _artifact_state(link)
        job = None
        if manifest.build_id:
            job = await build_jobs_repo.get_by_ci_build_id(session, manifest.build_id)
        if job is not None and job.app_link_id == link.id:
            # Known build: complete it through the ledger so job and link stay consistent.
            outcome = await ledger.mark_succeeded(session, manifest.build_id, manifest.artifacts())
            if outcome.applied:
                refreshed = await app_links_repo.get_link(session, link.id)
                link = refreshed if refreshed is not None else link
            else:
                # Terminal jobs keep their recorded outcome; the published artifacts still reach the link.
                logger.info(
                    "manifest_job_already_terminal job_id=%s status=%s", job.id, outcome.job.status
                )
                link = await apply_link_artifacts(session, link, manifest.artifacts())
        else:
            link = await apply_link_artifacts(session, link, manifest.artifacts())

        updated = _artifact_state(link) != before
        increment_counter(f"manifest_pulls_total.{REASON_UPDATED if updated else REASON_UNCHANGED}")
        logger.info(
            "manifest_pulled link_id=%s updated=%s build_id=%s", link.id, updated, manifest.build_id
        )
        return ManifestPullResult(
            link=link,
            updated=updated,
            reason=REASON_UPDATED if updated else REASON_UNCHANGED,
            manifest_url=url,
        )


async def refresh_active_links(session: AsyncSession, poller: ManifestPoller | None = None) -> dict[str, int]:
    """Pull manifests for every ACTIVE link; failures are logged and counted, not raised."""
    poller = poller or ManifestPoller()
    summary = {"checked": 0, "updated": 0, "not_published": 0, "errors": 0}
    for link in await app_links_repo.list_active_links(session):
        summary["checked"] += 1
        try:
            result = await poller.pull(session, link.owner_id, link.project_id, link.slug)
        except ManifestFetchError as exc:
            summary["errors"] += 1
            logger.warning("manifest_refresh_failed link_id=%s error=%s", link.id, exc)
            continue
        if result.updated:
            summary["updated"] += 1
        elif result.reason == REASON_NOT_PUBLISHED:
            summary["not_published"] += 1
    logger.info(
        "manifest_refresh_complete checked=%s updated=%s not_published=%s errors=%s",
        summary["checked"],
        summary["updated"],
        summary["not_published"],
        summary["errors"],
    )
    return summary
