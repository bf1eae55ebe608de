from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.domain.models import Currency, Owner, Project, Theme


async def get_owner(session: AsyncSession, owner_id: int) -> Owner | None:
    return await session.get(Owner, owner_id)


async def get_project(session: AsyncSession, project_id: int) -> Project | None:
    return await session.get(Project, project_id)


async def get_currency(session: AsyncSession, currency_id: int) -> Currency | None:
    return await session.get(Currency, currency_id)


async def get_theme(session: AsyncSession, theme_id: int) -> Theme | None:
    return await session.get(Theme, theme_id)


async def get_active_theme(session: AsyncSession) -> Theme | None:
    # Lowest id wins if more than one theme was flagged active by mistake.
    result = await session.execute(
        select(Theme).where(Theme.is_active.is_(True)).order_by(Theme.id).limit(1)
    )
    return result.scalar_one_or_none()


async def create_theme(
    session: AsyncSession, *, name: str, theme_json: str, is_active: bool = False
) -> Theme:
    theme = Theme(name=name, theme_json=theme_json, is_active=is_active)
    session.add(theme)
    await session.flush()
    return theme
