from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from appforge.domain.models import AppLink, AppRequest, BuildJob, Owner, Project
from appforge.services.builds.config_assembler import BuildConfigOverrides


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class BuildJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    app_link_id: int
    platform: str
    status: str
    ci_build_id: str | None
    version_code: int | None
    version_name: str | None
    apk_url: str | None
    bundle_url: str | None
    ipa_url: str | None
    error: str | None
    created_at: datetime | None
    started_at: datetime | None
    finished_at: datetime | None


class NoBuildJobResponse(BaseModel):
    message: str


class AppLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    project_id: int
    slug: str
    app_name: str | None
    status: str
    license_id: str | None
    valid_from: datetime | None
    end_to: datetime | None
    theme_id: int | None
    currency_id: int | None
    logo_url: str | None
    android_package_name: str | None
    android_version_code: int | None
    android_version_name: str | None
    ios_bundle_id: str | None
    ios_build_number: int | None
    ios_version_name: str | None
    apk_url: str | None
    bundle_url: str | None
    ipa_url: str | None


class AppRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    project_id: int
    app_name: str
    slug: str
    logo_url: str | None
    theme_id: int | None
    currency_id: int | None
    notes: str | None
    status: str
    app_link_id: int | None
    created_at: datetime | None
    decided_at: datetime | None


class BuildOverridesRequest(BaseModel):
    # JSON fields travel as strings so they reach CI byte-for-byte.
    api_base_url_override: str | None = Field(
        default=None, validation_alias=_alias("api_base_url_override", "apiBaseUrlOverride")
    )
    nav_json: str | None = Field(default=None, validation_alias=_alias("nav_json", "navJson"))
    home_json: str | None = Field(default=None, validation_alias=_alias("home_json", "homeJson"))
    enabled_features_json: str | None = Field(
        default=None, validation_alias=_alias("enabled_features_json", "enabledFeaturesJson")
    )
    branding_json: str | None = Field(
        default=None, validation_alias=_alias("branding_json", "brandingJson")
    )

    def to_overrides(self) -> BuildConfigOverrides:
        return BuildConfigOverrides(
            api_base_url_override=self.api_base_url_override,
            nav_json=self.nav_json,
            home_json=self.home_json,
            enabled_features_json=self.enabled_features_json,
            branding_json=self.branding_json,
        )


class RebuildResponse(BaseModel):
    link: AppLinkResponse
    jobs: dict[str, BuildJobResponse]


class ProvisionResponse(BaseModel):
    request: AppRequestResponse
    link: AppLinkResponse
    job: BuildJobResponse | None


class AdminAppRow(BaseModel):
    link_id: int
    owner_id: int
    owner_username: str | None
    owner_email: str | None
    project_id: int
    project_name: str | None
    slug: str
    app_name: str | None
    status: str
    android_package_name: str | None
    android_version_code: int | None
    android_version_name: str | None
    ios_bundle_id: str | None
    ios_build_number: int | None
    ios_version_name: str | None
    apk_url: str | None
    bundle_url: str | None
    ipa_url: str | None


def job_response(job: BuildJob) -> BuildJobResponse:
    return BuildJobResponse.model_validate(job)


def link_response(link: AppLink) -> AppLinkResponse:
    return AppLinkResponse.model_validate(link)


def request_response(request: AppRequest) -> AppRequestResponse:
    return AppRequestResponse.model_validate(request)


def admin_row(link: AppLink, owner: Owner | None, project: Project | None) -> AdminAppRow:
    return AdminAppRow(
        link_id=link.id,
        owner_id=link.owner_id,
        owner_username=owner.username if owner else None,
        owner_email=owner.email if owner else None,
        project_id=link.project_id,
        project_name=project.name if project else None,
        slug=link.slug,
        app_name=link.app_name,
        status=link.status,
        android_package_name=link.android_package_name,
        android_version_code=link.android_version_code,
        android_version_name=link.android_version_name,
        ios_bundle_id=link.ios_bundle_id,
        ios_build_number=link.ios_build_number,
        ios_version_name=link.ios_version_name,
        apk_url=link.apk_url,
        bundle_url=link.bundle_url,
        ipa_url=link.ipa_url,
    )
