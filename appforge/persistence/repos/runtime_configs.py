from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.domain.models import AppRuntimeConfig


async def get_for_link(session: AsyncSession, app_link_id: int) -> AppRuntimeConfig | None:
    result = await session.execute(
        select(AppRuntimeConfig).where(AppRuntimeConfig.app_link_id == app_link_id)
    )
    return result.scalar_one_or_none()


async def upsert(
    session: AsyncSession,
    *,
    app_link_id: int,
    nav_json: str | None = None,
    home_json: str | None = None,
    enabled_features_json: str | None = None,
    branding_json: str | None = None,
    api_base_url_override: str | None = None,
) -> AppRuntimeConfig:
    # Only overwrite fields the caller actually supplied; blanks keep stored values.
    config = await get_for_link(session, app_link_id)
    if config is None:
        config = AppRuntimeConfig(app_link_id=app_link_id)
        session.add(config)
    supplied = {
        "nav_json": nav_json,
        "home_json": home_json,
        "enabled_features_json": enabled_features_json,
        "branding_json": branding_json,
        "api_base_url_override": api_base_url_override,
    }
    for field, value in supplied.items():
        if value is not None and value.strip():
            setattr(config, field, value)
    await session.flush()
    return config
