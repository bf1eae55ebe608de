from __future__ import annotations

import base64
import json

import pytest

from appforge.core.errors import InvalidBuildRequestError
from appforge.persistence.db import SessionLocal
from appforge.persistence.repos import app_links as app_links_repo
from appforge.services.builds.config_assembler import BuildConfigOverrides, assemble
from appforge.services.builds.theme_json import ThemePalette, build_theme_json, resolve_menu_type
from appforge.tests.utils.seed import create_runtime_config, create_theme, seed_app


async def _assemble(link_id: int, overrides: BuildConfigOverrides | None = None):
    async with SessionLocal() as session:
        link = await app_links_repo.get_link(session, link_id)
        return await assemble(session, link, overrides)


@pytest.mark.asyncio
async def test_defaults_fill_every_json_field() -> None:
    seeded = await seed_app()
    snapshot = await _assemble(seeded.link_id)

    assert snapshot.theme_id is None
    assert snapshot.theme_json == "{}"
    assert snapshot.nav_json == "[]"
    assert snapshot.home_json == "{}"
    assert snapshot.enabled_features_json == "[]"
    assert snapshot.branding_json == "{}"
    assert snapshot.api_base_url == "http://localhost:8080"
    assert snapshot.api_base_url_override is None
    assert snapshot.ws_path == "/api/ws"
    assert snapshot.owner_attach_mode == "header"
    assert snapshot.app_role == "both"
    assert snapshot.menu_type == "bottom"
    assert snapshot.app_type == "ECOMMERCE"
    assert snapshot.slug == "shop"


@pytest.mark.asyncio
async def test_active_theme_backs_links_without_a_theme() -> None:
    await create_theme(name="inactive", theme_json='{"a":1}')
    active_id = await create_theme(name="active", theme_json='{"menuType":"bottom"}', is_active=True)
    seeded = await seed_app()

    snapshot = await _assemble(seeded.link_id)
    assert snapshot.theme_id == active_id
    assert snapshot.theme_json == '{"menuType":"bottom"}'


@pytest.mark.asyncio
async def test_link_theme_wins_over_active_theme_and_blank_json_is_empty_object() -> None:
    await create_theme(name="active", theme_json='{"x":1}', is_active=True)
    blank_theme = await create_theme(name="blank", theme_json="  ")
    seeded = await seed_app(theme_id=blank_theme)

    snapshot = await _assemble(seeded.link_id)
    assert snapshot.theme_id == blank_theme
    assert snapshot.theme_json == "{}"


@pytest.mark.asyncio
async def test_runtime_config_is_used_and_overrides_win() -> None:
    seeded = await seed_app(with_currency=True)
    await create_runtime_config(
        seeded.link_id,
        nav_json='[{"id":"home"}]',
        home_json='{"hero":true}',
        enabled_features_json='["CART"]',
        branding_json='{"menuType":"drawer"}',
        api_base_url_override="https://stored.example.com",
    )

    stored = await _assemble(seeded.link_id)
    assert stored.nav_json == '[{"id":"home"}]'
    assert stored.enabled_features_json == '["CART"]'
    assert stored.api_base_url == "https://stored.example.com"
    assert stored.menu_type == "hamburger"
    assert stored.currency_code == "USD"
    assert stored.currency_symbol == "$"

    overridden = await _assemble(
        seeded.link_id,
        BuildConfigOverrides(
            nav_json='[{"id":"cart"}]',
            home_json="   ",
            api_base_url_override=" https://override.example.com ",
        ),
    )
    assert overridden.nav_json == '[{"id":"cart"}]'
    # A blank override falls back to the stored value.
    assert overridden.home_json == '{"hero":true}'
    assert overridden.api_base_url == "https://override.example.com"
    assert overridden.api_base_url_override == "https://override.example.com"


@pytest.mark.asyncio
async def test_invalid_override_json_is_rejected() -> None:
    seeded = await seed_app()
    with pytest.raises(InvalidBuildRequestError, match="nav_json"):
        await _assemble(seeded.link_id, BuildConfigOverrides(nav_json="[not json"))


@pytest.mark.asyncio
async def test_ci_config_carries_base64_twins_and_branding() -> None:
    seeded = await seed_app()
    await create_runtime_config(seeded.link_id, home_json='{"title":"Café \\"Ñ\\""}')
    snapshot = await _assemble(seeded.link_id)
    config = snapshot.to_ci_config()

    assert base64.b64decode(config["HOME_JSON_B64"]).decode("utf-8") == snapshot.home_json
    assert json.loads(base64.b64decode(config["THEME_JSON_B64"])) == {}
    assert config["OWNER_PROJECT_LINK_ID"] == str(seeded.link_id)
    assert config["LOGO_URL"] == ""
    assert config["CURRENCY_ID"] == ""
    assert config["BRANDING"] == {"logoPath": "", "splashColor": "#FFFFFF"}
    assert config["WS_PATH"] == "/api/ws"


def test_theme_builder_fills_defaults_from_palette() -> None:
    document = json.loads(build_theme_json(ThemePalette(primary="#112233", menu_type="Drawer")))
    colors = document["valuesMobile"]["colors"]

    assert document["menuType"] == "hamburger"
    assert colors["primary"] == "#112233"
    assert colors["secondary"] == "#112233"
    assert colors["background"] == "#FFFFFF"
    assert document["valuesMobile"]["button"]["radius"] == 16


def test_menu_type_resolution() -> None:
    assert resolve_menu_type(None) == "bottom"
    assert resolve_menu_type("hamburger") == "hamburger"
    assert resolve_menu_type("drawer") == "hamburger"
    assert resolve_menu_type("tabs") == "bottom"
