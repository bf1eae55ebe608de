from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.domain.app_requests import REQUEST_STATUS_PENDING
from appforge.domain.models import AppRequest


async def create_request(
    session: AsyncSession,
    *,
    owner_id: int,
    project_id: int,
    app_name: str,
    slug: str,
    logo_url: str | None,
    theme_id: int | None,
    currency_id: int | None,
    notes: str | None,
) -> AppRequest:
    request = AppRequest(
        owner_id=owner_id,
        project_id=project_id,
        app_name=app_name,
        slug=slug,
        logo_url=logo_url,
        theme_id=theme_id,
        currency_id=currency_id,
        notes=notes,
        status=REQUEST_STATUS_PENDING,
    )
    session.add(request)
    await session.flush()
    return request


async def get_request(session: AsyncSession, request_id: int) -> AppRequest | None:
    result = await session.execute(
        select(AppRequest).where(AppRequest.id == request_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_for_owner(session: AsyncSession, owner_id: int) -> list[AppRequest]:
    result = await session.execute(
        select(AppRequest)
        .where(AppRequest.owner_id == owner_id)
        .order_by(AppRequest.created_at.desc(), AppRequest.id.desc())
    )
    return list(result.scalars().all())


async def list_by_status(session: AsyncSession, status: str) -> list[AppRequest]:
    result = await session.execute(
        select(AppRequest)
        .where(AppRequest.status == status)
        .order_by(AppRequest.created_at, AppRequest.id)
    )
    return list(result.scalars().all())


async def slug_reserved(session: AsyncSession, owner_id: int, project_id: int, slug: str) -> bool:
    # Pending requests reserve their slug so two requests cannot collide on approval.
    result = await session.execute(
        select(AppRequest.id)
        .where(
            AppRequest.owner_id == owner_id,
            AppRequest.project_id == project_id,
            AppRequest.slug == slug,
            AppRequest.status == REQUEST_STATUS_PENDING,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
