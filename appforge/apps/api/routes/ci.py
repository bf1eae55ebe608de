from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.apps.api.deps import get_db, get_manifest_poller, require_ci_caller
from appforge.apps.api.openapi import CI_ERROR_RESPONSES
from appforge.apps.api.response import SuccessEnvelope, success_response
from appforge.apps.api.schemas import AppLinkResponse, BuildJobResponse, job_response, link_response
from appforge.core.config import get_settings
from appforge.core.errors import AppLinkNotFoundError
from appforge.persistence.repos import app_links as app_links_repo
from appforge.services.builds import callbacks
from appforge.services.builds.callbacks import CallbackAck
from appforge.services.builds.config_assembler import assemble
from appforge.services.builds.ledger import ArtifactUrls
from appforge.services.builds.manifest import ManifestPoller


router = APIRouter(
    prefix="/ci",
    tags=["ci"],
    responses=CI_ERROR_RESPONSES,
    dependencies=[Depends(require_ci_caller)],
)


class CiBuildConfigResponse(BaseModel):
    # Mirrors the CI workflow inputs; *_b64 twins survive shell quoting.
    owner_id: int
    project_id: int
    link_id: int
    slug: str
    app_name: str
    app_type: str
    logo_url: str | None
    theme_id: int | None
    theme_json: str
    theme_json_b64: str
    menu_type: str
    currency_id: int | None
    currency_code: str | None
    currency_symbol: str | None
    api_base_url: str
    api_base_url_override: str | None
    ws_path: str
    owner_attach_mode: str
    app_role: str
    nav_json: str
    nav_json_b64: str
    home_json: str
    home_json_b64: str
    enabled_features_json: str
    enabled_features_json_b64: str
    branding_json: str
    branding_json_b64: str
    android_package_name: str | None
    android_version_code: int | None
    android_version_name: str | None
    ios_bundle_id: str | None
    ios_build_number: int | None
    ios_version_name: str | None


class MobileRuntimeConfigResponse(BaseModel):
    owner_id: int
    project_id: int
    link_id: int
    slug: str
    api_base_url: str
    ws_path: str
    owner_attach_mode: str
    app_role: str


class CallbackAckResponse(BaseModel):
    status: str
    ci_build_id: str
    job: BuildJobResponse | None = None


class BuildFailedRequest(BaseModel):
    error: str | None = None


class BuildSucceededRequest(BaseModel):
    apk_url: str | None = Field(default=None, validation_alias=AliasChoices("apk_url", "apkUrl"))
    bundle_url: str | None = Field(
        default=None, validation_alias=AliasChoices("bundle_url", "bundleUrl", "aabUrl")
    )
    ipa_url: str | None = Field(default=None, validation_alias=AliasChoices("ipa_url", "ipaUrl"))


class ApkUrlRequest(BaseModel):
    # Optional at the schema level so a blank value gets a domain 400 instead of a 422.
    apk_url: str | None = Field(default=None, validation_alias=AliasChoices("apk_url", "apkUrl"))


class ManifestPullResponse(BaseModel):
    link_id: int
    updated: bool
    reason: str
    manifest_url: str
    apk_url: str | None
    bundle_url: str | None
    ipa_url: str | None


def _ack_response(ack: CallbackAck) -> CallbackAckResponse:
    return CallbackAckResponse(
        status=ack.status,
        ci_build_id=ack.ci_build_id,
        job=job_response(ack.job) if ack.job is not None else None,
    )


async def _require_link(db: AsyncSession, link_id: int):
    link = await app_links_repo.get_link(db, link_id)
    if link is None:
        raise AppLinkNotFoundError(f"App link not found: {link_id}")
    return link


@router.get(
    "/build-config/{link_id}",
    response_model=SuccessEnvelope[CiBuildConfigResponse] | CiBuildConfigResponse,
)
async def get_build_config(
    link_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await _require_link(db, link_id)
    snapshot = await assemble(db, link)
    payload = CiBuildConfigResponse(
        owner_id=snapshot.owner_id,
        project_id=snapshot.project_id,
        link_id=snapshot.link_id,
        slug=snapshot.slug,
        app_name=snapshot.app_name,
        app_type=snapshot.app_type,
        logo_url=snapshot.logo_url,
        theme_id=snapshot.theme_id,
        theme_json=snapshot.theme_json,
        theme_json_b64=snapshot.theme_json_b64,
        menu_type=snapshot.menu_type,
        currency_id=snapshot.currency_id,
        currency_code=snapshot.currency_code,
        currency_symbol=snapshot.currency_symbol,
        api_base_url=snapshot.api_base_url,
        api_base_url_override=snapshot.api_base_url_override,
        ws_path=snapshot.ws_path,
        owner_attach_mode=snapshot.owner_attach_mode,
        app_role=snapshot.app_role,
        nav_json=snapshot.nav_json,
        nav_json_b64=snapshot.nav_json_b64,
        home_json=snapshot.home_json,
        home_json_b64=snapshot.home_json_b64,
        enabled_features_json=snapshot.enabled_features_json,
        enabled_features_json_b64=snapshot.enabled_features_json_b64,
        branding_json=snapshot.branding_json,
        branding_json_b64=snapshot.branding_json_b64,
        android_package_name=link.android_package_name,
        android_version_code=link.android_version_code,
        android_version_name=link.android_version_name,
        ios_bundle_id=link.ios_bundle_id,
        ios_build_number=link.ios_build_number,
        ios_version_name=link.ios_version_name,
    )
    return success_response(request=request, data=payload)


@router.get(
    "/config/owner-projects/{owner_id}/{project_id}/apps/{slug}",
    response_model=SuccessEnvelope[MobileRuntimeConfigResponse] | MobileRuntimeConfigResponse,
)
async def get_mobile_runtime_config(
    owner_id: int,
    project_id: int,
    slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await app_links_repo.get_link_by_slug(db, owner_id, project_id, slug.lower())
    if link is None:
        raise AppLinkNotFoundError(f"App link not found for {owner_id}/{project_id}/{slug}")
    snapshot = await assemble(db, link)
    settings = get_settings()
    payload = MobileRuntimeConfigResponse(
        owner_id=link.owner_id,
        project_id=link.project_id,
        link_id=link.id,
        slug=link.slug,
        api_base_url=snapshot.api_base_url,
        ws_path=settings.mobile_ws_path,
        owner_attach_mode=settings.mobile_owner_attach_mode,
        app_role=settings.mobile_app_role,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/build-jobs/{ci_build_id}/running",
    response_model=SuccessEnvelope[CallbackAckResponse] | CallbackAckResponse,
)
async def build_running(
    ci_build_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    ack = await callbacks.handle_running(db, ci_build_id)
    return success_response(request=request, data=_ack_response(ack), ci_build_id=ack.ci_build_id)


@router.post(
    "/build-jobs/{ci_build_id}/failed",
    response_model=SuccessEnvelope[CallbackAckResponse] | CallbackAckResponse,
)
async def build_failed(
    ci_build_id: str,
    request: Request,
    payload: BuildFailedRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    ack = await callbacks.handle_failed(db, ci_build_id, payload.error if payload else None)
    return success_response(request=request, data=_ack_response(ack), ci_build_id=ack.ci_build_id)


@router.post(
    "/build-jobs/{ci_build_id}/succeeded",
    response_model=SuccessEnvelope[CallbackAckResponse] | CallbackAckResponse,
)
async def build_succeeded(
    ci_build_id: str,
    request: Request,
    payload: BuildSucceededRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    body = payload or BuildSucceededRequest()
    artifacts = ArtifactUrls(apk_url=body.apk_url, bundle_url=body.bundle_url, ipa_url=body.ipa_url)
    ack = await callbacks.handle_succeeded(db, ci_build_id, artifacts)
    return success_response(request=request, data=_ack_response(ack), ci_build_id=ack.ci_build_id)


@router.put(
    "/owner-projects/{owner_id}/{project_id}/apps/{slug}/apk-url",
    response_model=SuccessEnvelope[AppLinkResponse] | AppLinkResponse,
)
async def put_apk_url(
    owner_id: int,
    project_id: int,
    slug: str,
    payload: ApkUrlRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await callbacks.set_apk_url(db, owner_id, project_id, slug.lower(), payload.apk_url)
    return success_response(request=request, data=link_response(link))


@router.post(
    "/pull/{owner_id}/{project_id}/{slug}",
    response_model=SuccessEnvelope[ManifestPullResponse] | ManifestPullResponse,
)
async def pull_manifest(
    owner_id: int,
    project_id: int,
    slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    poller: ManifestPoller = Depends(get_manifest_poller),
) -> dict:
    result = await poller.pull(db, owner_id, project_id, slug)
    payload = ManifestPullResponse(
        link_id=result.link.id,
        updated=result.updated,
        reason=result.reason,
        manifest_url=result.manifest_url,
        apk_url=result.link.apk_url,
        bundle_url=result.link.bundle_url,
        ipa_url=result.link.ipa_url,
    )
    return success_response(request=request, data=payload)
