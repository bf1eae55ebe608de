from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.domain.builds import LINK_STATUS_ACTIVE, PLATFORM_ANDROID, PLATFORM_IOS
from appforge.domain.models import AppLink, Owner, Project
from appforge.services.builds.versioning import next_version_name


async def create_link(
    session: AsyncSession,
    *,
    owner_id: int,
    project_id: int,
    slug: str,
    app_name: str | None,
    status: str = LINK_STATUS_ACTIVE,
    license_id: str | None = None,
    valid_from: datetime | None = None,
    end_to: datetime | None = None,
    theme_id: int | None = None,
    currency_id: int | None = None,
    logo_url: str | None = None,
) -> AppLink:
    link = AppLink(
        owner_id=owner_id,
        project_id=project_id,
        slug=slug,
        app_name=app_name,
        status=status,
        license_id=license_id,
        valid_from=valid_from,
        end_to=end_to,
        theme_id=theme_id,
        currency_id=currency_id,
        logo_url=logo_url,
    )
    session.add(link)
    # Flush so the generated id is available for package/bundle derivation.
    await session.flush()
    return link


async def get_link(session: AsyncSession, link_id: int) -> AppLink | None:
    result = await session.execute(
        select(AppLink).where(AppLink.id == link_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_link_for_owner(session: AsyncSession, link_id: int, owner_id: int) -> AppLink | None:
    # Return None for foreign links so callers can answer with a uniform 404.
    result = await session.execute(
        select(AppLink).where(AppLink.id == link_id, AppLink.owner_id == owner_id)
    )
    return result.scalar_one_or_none()


async def get_link_by_slug(
    session: AsyncSession, owner_id: int, project_id: int, slug: str
) -> AppLink | None:
    result = await session.execute(
        select(AppLink)
        .where(
            AppLink.owner_id == owner_id,
            AppLink.project_id == project_id,
            AppLink.slug == slug,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def slug_exists(session: AsyncSession, owner_id: int, project_id: int, slug: str) -> bool:
    result = await session.execute(
        select(func.count())
        .select_from(AppLink)
        .where(
            AppLink.owner_id == owner_id,
            AppLink.project_id == project_id,
            AppLink.slug == slug,
        )
    )
    return int(result.scalar() or 0) > 0


async def list_links_for_owner(session: AsyncSession, owner_id: int) -> list[AppLink]:
    result = await session.execute(
        select(AppLink).where(AppLink.owner_id == owner_id).order_by(AppLink.id.desc())
    )
    return list(result.scalars().all())


async def list_active_links(session: AsyncSession) -> list[AppLink]:
    result = await session.execute(
        select(AppLink).where(AppLink.status == LINK_STATUS_ACTIVE).order_by(AppLink.id)
    )
    return list(result.scalars().all())


async def list_link_rows(session: AsyncSession) -> list[tuple[AppLink, Owner | None, Project | None]]:
    # Flatten owner/project names in one query instead of lazy-loading per row.
    result = await session.execute(
        select(AppLink, Owner, Project)
        .outerjoin(Owner, Owner.id == AppLink.owner_id)
        .outerjoin(Project, Project.id == AppLink.project_id)
        .order_by(AppLink.id.desc())
    )
    return [(row[0], row[1], row[2]) for row in result.all()]


async def get_link_row(
    session: AsyncSession, link_id: int
) -> tuple[AppLink, Owner | None, Project | None] | None:
    result = await session.execute(
        select(AppLink, Owner, Project)
        .outerjoin(Owner, Owner.id == AppLink.owner_id)
        .outerjoin(Project, Project.id == AppLink.project_id)
        .where(AppLink.id == link_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1], row[2]


async def write_artifacts(
    session: AsyncSession,
    link_id: int,
    *,
    apk_url: str | None = None,
    bundle_url: str | None = None,
    ipa_url: str | None = None,
) -> int:
    """Write only the provided artifact columns in one UPDATE.

    Version columns are never part of the statement, so a concurrent bump
    and an artifact delivery cannot overwrite each other.
    """
    values: dict[str, Any] = {}
    if apk_url is not None:
        values["apk_url"] = apk_url
    if bundle_url is not None:
        values["bundle_url"] = bundle_url
    if ipa_url is not None:
        values["ipa_url"] = ipa_url
    if not values:
        return 0
    result = await session.execute(
        update(AppLink)
        .where(AppLink.id == link_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def reset_artifacts(session: AsyncSession, link_id: int) -> None:
    # Clear stale artifacts when a link is (re)provisioned.
    await session.execute(
        update(AppLink)
        .where(AppLink.id == link_id)
        .values(apk_url=None, bundle_url=None, ipa_url=None)
        .execution_options(synchronize_session=False)
    )


async def ensure_identifiers(
    session: AsyncSession,
    link_id: int,
    *,
    android_package_name: str | None = None,
    ios_bundle_id: str | None = None,
) -> None:
    # Only fill identifiers that are still empty; an issued package name never changes.
    if android_package_name is not None:
        await session.execute(
            update(AppLink)
            .where(
                AppLink.id == link_id,
                (AppLink.android_package_name.is_(None)) | (AppLink.android_package_name == ""),
            )
            .values(android_package_name=android_package_name)
            .execution_options(synchronize_session=False)
        )
    if ios_bundle_id is not None:
        await session.execute(
            update(AppLink)
            .where(
                AppLink.id == link_id,
                (AppLink.ios_bundle_id.is_(None)) | (AppLink.ios_bundle_id == ""),
            )
            .values(ios_bundle_id=ios_bundle_id)
            .execution_options(synchronize_session=False)
        )


async def bump_version(session: AsyncSession, link_id: int, platform: str) -> tuple[int, str]:
    """Reserve the next version for ``platform`` and return ``(code, name)``.

    The counter is incremented with column arithmetic against the persisted
    value; the version name is derived from a row locked FOR UPDATE.
    """
    if platform == PLATFORM_ANDROID:
        code_col, name_col = AppLink.android_version_code, AppLink.android_version_name
    elif platform == PLATFORM_IOS:
        code_col, name_col = AppLink.ios_build_number, AppLink.ios_version_name
    else:
        raise ValueError(f"Invalid platform: {platform}")

    locked = await session.execute(
        select(name_col).where(AppLink.id == link_id).with_for_update()
    )
    current_name = locked.scalar_one_or_none()
    next_name = next_version_name(current_name)
    await session.execute(
        update(AppLink)
        .where(AppLink.id == link_id)
        .values({code_col: func.coalesce(code_col, 0) + 1, name_col: next_name})
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(select(code_col, name_col).where(AppLink.id == link_id))
    code, name = result.one()
    return int(code), str(name)
