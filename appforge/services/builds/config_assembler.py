from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.core.errors import InvalidBuildRequestError
from appforge.domain.models import AppLink, AppRuntimeConfig
from appforge.persistence.repos import catalog as catalog_repo
from appforge.persistence.repos import runtime_configs as runtime_configs_repo
from appforge.services.builds.theme_json import menu_type_from_branding, resolve_menu_type


logger = logging.getLogger(__name__)

EMPTY_OBJECT = "{}"
EMPTY_ARRAY = "[]"
DEFAULT_APP_TYPE = "ECOMMERCE"
SPLASH_COLOR = "#FFFFFF"


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


@dataclass(frozen=True)
class BuildConfigOverrides:
    api_base_url_override: str | None = None
    nav_json: str | None = None
    home_json: str | None = None
    enabled_features_json: str | None = None
    branding_json: str | None = None

    def validate(self) -> None:
        # Reject malformed JSON before any ledger row or version bump is written.
        for field_name in ("nav_json", "home_json", "enabled_features_json", "branding_json"):
            value = getattr(self, field_name)
            if _blank(value):
                continue
            try:
                json.loads(value)
            except ValueError as exc:
                raise InvalidBuildRequestError(f"{field_name} is not valid JSON") from exc

    def is_empty(self) -> bool:
        return all(
            _blank(value)
            for value in (
                self.api_base_url_override,
                self.nav_json,
                self.home_json,
                self.enabled_features_json,
                self.branding_json,
            )
        )


@dataclass(frozen=True)
class BuildConfigSnapshot:
    """Flat, transport-safe build configuration for one dispatch.

    JSON fields are always parseable strings (``{}``/``[]`` when absent). The
    base64 twins are derived on access and never stored.
    """

    owner_id: int
    project_id: int
    link_id: int
    slug: str
    app_name: str
    app_type: str
    logo_url: str | None
    theme_id: int | None
    theme_json: str
    currency_id: int | None
    currency_code: str | None
    currency_symbol: str | None
    api_base_url_override: str | None
    api_base_url: str
    ws_path: str
    owner_attach_mode: str
    app_role: str
    nav_json: str
    home_json: str
    enabled_features_json: str
    branding_json: str
    menu_type: str

    @property
    def theme_json_b64(self) -> str:
        return b64(self.theme_json)

    @property
    def nav_json_b64(self) -> str:
        return b64(self.nav_json)

    @property
    def home_json_b64(self) -> str:
        return b64(self.home_json)

    @property
    def enabled_features_json_b64(self) -> str:
        return b64(self.enabled_features_json)

    @property
    def branding_json_b64(self) -> str:
        return b64(self.branding_json)

    def to_ci_config(self) -> dict[str, Any]:
        # Upper snake keys map 1:1 onto the CI workflow's environment variables.
        return {
            "OWNER_ID": str(self.owner_id),
            "PROJECT_ID": str(self.project_id),
            "OWNER_PROJECT_LINK_ID": str(self.link_id),
            "SLUG": self.slug,
            "APP_NAME": self.app_name,
            "APP_TYPE": self.app_type,
            "LOGO_URL": self.logo_url or "",
            "THEME_ID": "" if self.theme_id is None else str(self.theme_id),
            "THEME_JSON": self.theme_json,
            "THEME_JSON_B64": self.theme_json_b64,
            "MENU_TYPE": self.menu_type,
            "CURRENCY_ID": "" if self.currency_id is None else str(self.currency_id),
            "CURRENCY_CODE": self.currency_code or "",
            "CURRENCY_SYMBOL": self.currency_symbol or "",
            "API_BASE_URL": self.api_base_url,
            "API_BASE_URL_OVERRIDE": self.api_base_url_override or "",
            "WS_PATH": self.ws_path,
            "OWNER_ATTACH_MODE": self.owner_attach_mode,
            "APP_ROLE": self.app_role,
            "NAV_JSON": self.nav_json,
            "NAV_JSON_B64": self.nav_json_b64,
            "HOME_JSON": self.home_json,
            "HOME_JSON_B64": self.home_json_b64,
            "ENABLED_FEATURES_JSON": self.enabled_features_json,
            "ENABLED_FEATURES_JSON_B64": self.enabled_features_json_b64,
            "BRANDING_JSON": self.branding_json,
            "BRANDING_JSON_B64": self.branding_json_b64,
            "BRANDING": {"logoPath": self.logo_url or "", "splashColor": SPLASH_COLOR},
        }


def _resolve_json(override: str | None, stored: str | None, default: str) -> str:
    if not _blank(override):
        return override.strip()
    if not _blank(stored):
        return stored.strip()
    return default


async def _resolve_theme(session: AsyncSession, link: AppLink) -> tuple[int | None, str]:
    if link.theme_id is not None:
        theme = await catalog_repo.get_theme(session, link.theme_id)
        if theme is not None:
            return theme.id, theme.theme_json if not _blank(theme.theme_json) else EMPTY_OBJECT
        logger.info("theme_not_found link_id=%s theme_id=%s", link.id, link.theme_id)
    active = await catalog_repo.get_active_theme(session)
    if active is not None:
        return active.id, active.theme_json if not _blank(active.theme_json) else EMPTY_OBJECT
    return None, EMPTY_OBJECT


async def assemble(
    session: AsyncSession,
    link: AppLink,
    overrides: BuildConfigOverrides | None = None,
) -> BuildConfigSnapshot:
    """Build a fresh snapshot for ``link``; read-only against the database."""
    settings = get_settings()
    overrides = overrides or BuildConfigOverrides()
    overrides.validate()

    runtime: AppRuntimeConfig | None = await runtime_configs_repo.get_for_link(session, link.id)
    project = await catalog_repo.get_project(session, link.project_id)
    currency = (
        await catalog_repo.get_currency(session, link.currency_id) if link.currency_id is not None else None
    )
    theme_id, theme_json = await _resolve_theme(session, link)

    nav_json = _resolve_json(overrides.nav_json, runtime.nav_json if runtime else None, EMPTY_ARRAY)
    home_json = _resolve_json(overrides.home_json, runtime.home_json if runtime else None, EMPTY_OBJECT)
    features_json = _resolve_json(
        overrides.enabled_features_json,
        runtime.enabled_features_json if runtime else None,
        EMPTY_ARRAY,
    )
    branding_json = _resolve_json(
        overrides.branding_json, runtime.branding_json if runtime else None, EMPTY_OBJECT
    )

    api_base_url_override = None
    if not _blank(overrides.api_base_url_override):
        api_base_url_override = overrides.api_base_url_override.strip()
    elif runtime is not None and not _blank(runtime.api_base_url_override):
        api_base_url_override = runtime.api_base_url_override.strip()

    return BuildConfigSnapshot(
        owner_id=link.owner_id,
        project_id=link.project_id,
        link_id=link.id,
        slug=link.slug,
        app_name=link.app_name or link.slug,
        app_type=(project.project_type if project and project.project_type else DEFAULT_APP_TYPE),
        logo_url=link.logo_url,
        theme_id=theme_id,
        theme_json=theme_json,
        currency_id=currency.id if currency else None,
        currency_code=currency.code if currency else None,
        currency_symbol=currency.symbol if currency else None,
        api_base_url_override=api_base_url_override,
        api_base_url=api_base_url_override or settings.mobile_api_base_url,
        ws_path=settings.mobile_ws_path,
        owner_attach_mode=settings.mobile_owner_attach_mode,
        app_role=settings.mobile_app_role,
        nav_json=nav_json,
        home_json=home_json,
        enabled_features_json=features_json,
        branding_json=branding_json,
        menu_type=resolve_menu_type(menu_type_from_branding(branding_json)),
    )
