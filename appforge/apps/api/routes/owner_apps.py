from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.apps.api.deps import Principal, get_build_provider, get_current_principal, get_db
from appforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from appforge.apps.api.response import SuccessEnvelope, success_response
from appforge.apps.api.schemas import (
    AppLinkResponse,
    AppRequestResponse,
    BuildJobResponse,
    BuildOverridesRequest,
    NoBuildJobResponse,
    ProvisionResponse,
    job_response,
    link_response,
    request_response,
)
from appforge.core.errors import AppLinkNotFoundError, InvalidBuildRequestError
from appforge.domain.builds import PLATFORM_ANDROID, PLATFORM_IOS, normalize_platform
from appforge.domain.models import AppLink
from appforge.persistence.repos import app_links as app_links_repo
from appforge.providers.ci.base import CiProvider
from appforge.services import app_requests as app_requests_service
from appforge.services.app_requests import AppRequestDraft
from appforge.services.builds import ledger
from appforge.services.builds.rebuilds import owner_rebuild
from appforge.services.builds.theme_json import ThemePalette


router = APIRouter(prefix="/owner", tags=["owner"], responses=DEFAULT_ERROR_RESPONSES)

NO_BUILD_JOBS_MESSAGE = "No build jobs found"


class PaletteRequest(BaseModel):
    primary: str | None = None
    secondary: str | None = None
    background: str | None = None
    on_background: str | None = Field(
        default=None, validation_alias=AliasChoices("on_background", "onBackground")
    )
    error: str | None = None
    menu_type: str | None = Field(default=None, validation_alias=AliasChoices("menu_type", "menuType"))


class AppRequestCreateRequest(BaseModel):
    project_id: int = Field(validation_alias=AliasChoices("project_id", "projectId"))
    app_name: str = Field(validation_alias=AliasChoices("app_name", "appName"))
    slug: str | None = None
    logo_url: str | None = Field(default=None, validation_alias=AliasChoices("logo_url", "logoUrl"))
    theme_id: int | None = Field(default=None, validation_alias=AliasChoices("theme_id", "themeId"))
    currency_id: int | None = Field(
        default=None, validation_alias=AliasChoices("currency_id", "currencyId")
    )
    notes: str | None = None
    palette: PaletteRequest | None = None

    def to_draft(self, owner_id: int) -> AppRequestDraft:
        palette = None
        if self.palette is not None:
            palette = ThemePalette(
                primary=self.palette.primary,
                secondary=self.palette.secondary,
                background=self.palette.background,
                on_background=self.palette.on_background,
                error=self.palette.error,
                menu_type=self.palette.menu_type,
            )
        return AppRequestDraft(
            owner_id=owner_id,
            project_id=self.project_id,
            app_name=self.app_name,
            slug=self.slug,
            logo_url=self.logo_url,
            theme_id=self.theme_id,
            palette=palette,
            currency_id=self.currency_id,
            notes=self.notes,
        )


class AutoApproveRequest(AppRequestCreateRequest, BuildOverridesRequest):
    pass


class BuildStatusResponse(BaseModel):
    link_id: int
    apk_url: str | None
    bundle_url: str | None
    ipa_url: str | None
    android: BuildJobResponse | None
    ios: BuildJobResponse | None


async def _owned_link_or_404(db: AsyncSession, link_id: int, principal: Principal) -> AppLink:
    # Foreign and missing links look identical to the caller.
    link = await app_links_repo.get_link_for_owner(db, link_id, principal.owner_id)
    if link is None:
        raise AppLinkNotFoundError(f"App link not found: {link_id}")
    return link


@router.post(
    "/app-requests",
    status_code=201,
    response_model=SuccessEnvelope[AppRequestResponse] | AppRequestResponse,
)
async def create_app_request(
    payload: AppRequestCreateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    app_request = await app_requests_service.create_request(db, payload.to_draft(principal.owner_id))
    return success_response(request=request, data=request_response(app_request))


@router.post(
    "/app-requests/auto",
    status_code=201,
    response_model=SuccessEnvelope[ProvisionResponse] | ProvisionResponse,
)
async def create_app_request_auto(
    payload: AutoApproveRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    outcome = await app_requests_service.create_and_auto_approve(
        db,
        payload.to_draft(principal.owner_id),
        overrides=payload.to_overrides(),
        provider=provider,
    )
    data = ProvisionResponse(
        request=request_response(outcome.request),
        link=link_response(outcome.link),
        job=job_response(outcome.job) if outcome.job is not None else None,
    )
    return success_response(request=request, data=data)


@router.get(
    "/app-requests",
    response_model=SuccessEnvelope[list[AppRequestResponse]] | list[AppRequestResponse],
)
async def list_app_requests(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await app_requests_service.list_requests_for_owner(db, principal.owner_id)
    return success_response(request=request, data=[request_response(item) for item in items])


@router.get(
    "/my-apps",
    response_model=SuccessEnvelope[list[AppLinkResponse]] | list[AppLinkResponse],
)
async def list_my_apps(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    links = await app_requests_service.list_links_for_owner(db, principal.owner_id)
    return success_response(request=request, data=[link_response(link) for link in links])


@router.get(
    "/apps/{link_id}/build-jobs",
    response_model=SuccessEnvelope[list[BuildJobResponse]] | list[BuildJobResponse],
)
async def list_build_jobs(
    link_id: int,
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await _owned_link_or_404(db, link_id, principal)
    jobs = await ledger.recent_jobs(db, link.id, limit=limit)
    return success_response(request=request, data=[job_response(job) for job in jobs])


@router.get(
    "/apps/{link_id}/build-jobs/latest",
    response_model=SuccessEnvelope[BuildJobResponse | NoBuildJobResponse]
    | BuildJobResponse
    | NoBuildJobResponse,
)
async def latest_build_job(
    link_id: int,
    request: Request,
    platform: str | None = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await _owned_link_or_404(db, link_id, principal)
    if platform is None or not platform.strip():
        job = await ledger.latest_job_any(db, link.id)
    else:
        try:
            resolved = normalize_platform(platform)
        except ValueError as exc:
            raise InvalidBuildRequestError(str(exc)) from exc
        job = await ledger.latest_job(db, link.id, resolved)
    if job is None:
        return success_response(request=request, data=NoBuildJobResponse(message=NO_BUILD_JOBS_MESSAGE))
    return success_response(request=request, data=job_response(job))


@router.get(
    "/apps/{link_id}/build-status",
    response_model=SuccessEnvelope[BuildStatusResponse] | BuildStatusResponse,
)
async def build_status(
    link_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    link = await _owned_link_or_404(db, link_id, principal)
    android = await ledger.latest_job(db, link.id, PLATFORM_ANDROID)
    ios = await ledger.latest_job(db, link.id, PLATFORM_IOS)
    data = BuildStatusResponse(
        link_id=link.id,
        apk_url=link.apk_url,
        bundle_url=link.bundle_url,
        ipa_url=link.ipa_url,
        android=job_response(android) if android is not None else None,
        ios=job_response(ios) if ios is not None else None,
    )
    return success_response(request=request, data=data)


@router.post(
    "/apps/{link_id}/rebuild",
    status_code=202,
    response_model=SuccessEnvelope[BuildJobResponse] | BuildJobResponse,
)
async def rebuild_app(
    link_id: int,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    job = await owner_rebuild(
        db, link_id, principal.owner_id, is_super_admin=principal.is_super_admin, provider=provider
    )
    return success_response(request=request, data=job_response(job))
