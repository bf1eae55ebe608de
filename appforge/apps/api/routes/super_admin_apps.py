from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.apps.api.deps import Principal, get_build_provider, get_db, require_super_admin
from appforge.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from appforge.apps.api.response import SuccessEnvelope, success_response
from appforge.apps.api.schemas import (
    AdminAppRow,
    AppRequestResponse,
    BuildJobResponse,
    BuildOverridesRequest,
    ProvisionResponse,
    RebuildResponse,
    admin_row,
    job_response,
    link_response,
    request_response,
)
from appforge.core.errors import AppLinkNotFoundError
from appforge.domain.app_requests import REQUEST_STATUS_PENDING
from appforge.domain.builds import PLATFORM_ANDROID, PLATFORM_IOS
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import runtime_configs as runtime_configs_repo
from appforge.providers.ci.base import CiProvider
from appforge.services import app_requests as app_requests_service
from appforge.services.builds import ledger
from appforge.services.builds.rebuilds import RebuildOutcome, admin_rebuild, admin_rebuild_both


router = APIRouter(prefix="/super-admin", tags=["super-admin"], responses=DEFAULT_ERROR_RESPONSES)


class AdminRebuildRequest(BuildOverridesRequest):
    bump_version: bool = Field(default=True, validation_alias=AliasChoices("bump_version", "bumpVersion"))


class AdminRebuildBothRequest(BuildOverridesRequest):
    bump_android: bool = Field(default=True, validation_alias=AliasChoices("bump_android", "bumpAndroid"))
    bump_ios: bool = Field(default=True, validation_alias=AliasChoices("bump_ios", "bumpIos"))


class RejectRequest(BaseModel):
    reason: str | None = None


class RuntimeConfigResponse(BaseModel):
    nav_json: str | None
    home_json: str | None
    enabled_features_json: str | None
    branding_json: str | None
    api_base_url_override: str | None


class AdminAppDetailsResponse(BaseModel):
    app: AdminAppRow
    license_id: str | None
    valid_from: datetime | None
    end_to: datetime | None
    runtime_config: RuntimeConfigResponse | None
    latest_android: BuildJobResponse | None
    latest_ios: BuildJobResponse | None
    recent_jobs: list[BuildJobResponse]


def _rebuild_response(outcome: RebuildOutcome) -> RebuildResponse:
    return RebuildResponse(
        link=link_response(outcome.link),
        jobs={platform: job_response(job) for platform, job in outcome.jobs.items()},
    )


@router.get("/apps", response_model=SuccessEnvelope[list[AdminAppRow]] | list[AdminAppRow])
async def list_apps(
    request: Request,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await app_links_repo.list_link_rows(db)
    return success_response(request=request, data=[admin_row(*row) for row in rows])


@router.get(
    "/apps/{link_id}",
    response_model=SuccessEnvelope[AdminAppDetailsResponse] | AdminAppDetailsResponse,
)
async def get_app(
    link_id: int,
    request: Request,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await app_links_repo.get_link_row(db, link_id)
    if row is None:
        raise AppLinkNotFoundError(f"App link not found: {link_id}")
    link = row[0]
    runtime = await runtime_configs_repo.get_for_link(db, link.id)
    latest_android = await ledger.latest_job(db, link.id, PLATFORM_ANDROID)
    latest_ios = await ledger.latest_job(db, link.id, PLATFORM_IOS)
    recent = await ledger.recent_jobs(db, link.id)
    data = AdminAppDetailsResponse(
        app=admin_row(*row),
        license_id=link.license_id,
        valid_from=link.valid_from,
        end_to=link.end_to,
        runtime_config=(
            RuntimeConfigResponse(
                nav_json=runtime.nav_json,
                home_json=runtime.home_json,
                enabled_features_json=runtime.enabled_features_json,
                branding_json=runtime.branding_json,
                api_base_url_override=runtime.api_base_url_override,
            )
            if runtime is not None
            else None
        ),
        latest_android=job_response(latest_android) if latest_android else None,
        latest_ios=job_response(latest_ios) if latest_ios else None,
        recent_jobs=[job_response(job) for job in recent],
    )
    return success_response(request=request, data=data)


@router.post(
    "/apps/{link_id}/rebuild-bundle",
    status_code=202,
    response_model=SuccessEnvelope[RebuildResponse] | RebuildResponse,
)
async def rebuild_bundle(
    link_id: int,
    request: Request,
    payload: AdminRebuildRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    body = payload or AdminRebuildRequest()
    outcome = await admin_rebuild(
        db,
        link_id,
        PLATFORM_ANDROID,
        bump_version=body.bump_version,
        overrides=body.to_overrides(),
        provider=provider,
    )
    return success_response(request=request, data=_rebuild_response(outcome))


@router.post(
    "/apps/{link_id}/rebuild-ios",
    status_code=202,
    response_model=SuccessEnvelope[RebuildResponse] | RebuildResponse,
)
async def rebuild_ios(
    link_id: int,
    request: Request,
    payload: AdminRebuildRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    body = payload or AdminRebuildRequest()
    outcome = await admin_rebuild(
        db,
        link_id,
        PLATFORM_IOS,
        bump_version=body.bump_version,
        overrides=body.to_overrides(),
        provider=provider,
    )
    return success_response(request=request, data=_rebuild_response(outcome))


@router.post(
    "/apps/{link_id}/rebuild-both",
    status_code=202,
    response_model=SuccessEnvelope[RebuildResponse] | RebuildResponse,
)
async def rebuild_both(
    link_id: int,
    request: Request,
    payload: AdminRebuildBothRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    body = payload or AdminRebuildBothRequest()
    outcome = await admin_rebuild_both(
        db,
        link_id,
        bump_android=body.bump_android,
        bump_ios=body.bump_ios,
        overrides=body.to_overrides(),
        provider=provider,
    )
    return success_response(request=request, data=_rebuild_response(outcome))


@router.get(
    "/app-requests",
    response_model=SuccessEnvelope[list[AppRequestResponse]] | list[AppRequestResponse],
)
async def list_app_requests(
    request: Request,
    status: str = Query(default=REQUEST_STATUS_PENDING),
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items = await app_requests_service.list_requests_by_status(db, status)
    return success_response(request=request, data=[request_response(item) for item in items])


@router.post(
    "/app-requests/{request_id}/approve",
    response_model=SuccessEnvelope[ProvisionResponse] | ProvisionResponse,
)
async def approve_app_request(
    request_id: int,
    request: Request,
    payload: BuildOverridesRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
    provider: CiProvider | None = Depends(get_build_provider),
) -> dict:
    overrides = payload.to_overrides() if payload is not None else None
    outcome = await app_requests_service.approve_request(
        db, request_id, overrides=overrides, provider=provider
    )
    data = ProvisionResponse(
        request=request_response(outcome.request),
        link=link_response(outcome.link),
        job=job_response(outcome.job) if outcome.job is not None else None,
    )
    return success_response(request=request, data=data)


@router.post(
    "/app-requests/{request_id}/reject",
    response_model=SuccessEnvelope[AppRequestResponse] | AppRequestResponse,
)
async def reject_app_request(
    request_id: int,
    request: Request,
    payload: RejectRequest | None = None,
    principal: Principal = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    app_request = await app_requests_service.reject_request(
        db, request_id, payload.reason if payload is not None else None
    )
    return success_response(request=request, data=request_response(app_request))
