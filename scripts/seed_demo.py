from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from appforge.core.config import get_settings
from appforge.domain.builds import LINK_STATUS_ACTIVE
from appforge.domain.models import Currency, Owner, Project
from appforge.persistence.db import SessionLocal
from appforge.persistence.repos import app_links as app_links_repo
from appforge.persistence.repos import catalog as catalog_repo
from appforge.persistence.repos import runtime_configs as runtime_configs_repo
from appforge.services.builds.theme_json import ThemePalette, build_theme_json
from appforge.services.builds.versioning import android_package_name, ios_bundle_id


DEMO_SLUG = "demo-shop"


async def seed() -> None:
    settings = get_settings()
    async with SessionLocal() as session:
        owner = Owner(username="demo-owner", email="owner@example.com", display_name="Demo Owner")
        project = Project(name="Demo Shop", project_type="ECOMMERCE")
        currency = Currency(code="USD", symbol="$")
        session.add_all([owner, project, currency])
        await session.flush()

        theme = await catalog_repo.create_theme(
            session,
            name="Demo Green",
            theme_json=build_theme_json(ThemePalette(primary="#16A34A", menu_type="bottom")),
            is_active=True,
        )
        now = datetime.now(timezone.utc)
        link = await app_links_repo.create_link(
            session,
            owner_id=owner.id,
            project_id=project.id,
            slug=DEMO_SLUG,
            app_name="Demo Shop",
            status=LINK_STATUS_ACTIVE,
            valid_from=now,
            end_to=now + timedelta(days=settings.app_validity_days),
            theme_id=theme.id,
            currency_id=currency.id,
        )
        await app_links_repo.ensure_identifiers(
            session,
            link.id,
            android_package_name=android_package_name(settings.android_package_prefix, link.id),
            ios_bundle_id=ios_bundle_id(settings.ios_bundle_prefix, link.id),
        )
        await runtime_configs_repo.upsert(
            session,
            app_link_id=link.id,
            nav_json='[{"id":"home","label":"Home"}]',
            enabled_features_json='["CART","ORDERS"]',
        )
        await session.commit()
        print(f"owner_id={owner.id} project_id={project.id} link_id={link.id} slug={DEMO_SLUG}")


if __name__ == "__main__":
    asyncio.run(seed())
