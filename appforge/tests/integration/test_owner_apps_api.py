from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from appforge.apps.api.main import create_app
from appforge.core.config import get_settings
from appforge.domain.builds import BUILD_STATUS_QUEUED, BUILD_STATUS_SUCCEEDED
from appforge.domain.models import AuditEvent
from appforge.persistence.db import SessionLocal
from appforge.providers.ci.fake import recorded_triggers
from appforge.tests.utils.auth import owner_headers
from appforge.tests.utils.seed import create_job, create_owner, create_project, seed_app


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_owner_routes_require_bearer_token() -> None:
    app = create_app()
    async with _client(app) as client:
        missing = await client.get("/v1/owner/my-apps")
        garbage = await client.get("/v1/owner/my-apps", headers={"Authorization": "Bearer not-a-jwt"})
        malformed = await client.get("/v1/owner/my-apps", headers={"Authorization": "Token abc"})

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert missing.headers["WWW-Authenticate"] == "Bearer"
    assert garbage.status_code == 401
    assert garbage.json()["error"]["message"] == "Invalid or expired token"
    assert malformed.status_code == 401

    async with SessionLocal() as session:
        events = (
            await session.execute(
                select(AuditEvent).where(AuditEvent.event_type == "auth.access.failure")
            )
        ).scalars().all()
    assert len(events) == 3
    assert {event.error_code for event in events} == {"AUTH_UNAUTHORIZED"}


@pytest.mark.asyncio
async def test_dev_bypass_headers(monkeypatch) -> None:
    seeded = await seed_app()
    monkeypatch.setenv("AUTH_DEV_BYPASS", "true")
    get_settings.cache_clear()
    app = create_app()
    async with _client(app) as client:
        allowed = await client.get("/v1/owner/my-apps", headers={"X-Owner-Id": str(seeded.owner_id)})
        no_owner = await client.get("/v1/owner/my-apps")
        bad_role = await client.get(
            "/v1/owner/my-apps", headers={"X-Owner-Id": str(seeded.owner_id), "X-Role": "editor"}
        )

    assert allowed.status_code == 200
    assert [item["id"] for item in allowed.json()["data"]] == [seeded.link_id]
    assert no_owner.status_code == 401
    assert bad_role.status_code == 400
    assert bad_role.json()["error"]["code"] == "AUTH_INVALID_ROLE"


@pytest.mark.asyncio
async def test_create_and_list_app_requests() -> None:
    owner_id = await create_owner()
    project_id = await create_project()
    app = create_app()
    headers = owner_headers(owner_id)
    async with _client(app) as client:
        created = await client.post(
            "/v1/owner/app-requests",
            headers=headers,
            json={"projectId": project_id, "appName": "Corner Shop", "notes": "asap"},
        )
        duplicate = await client.post(
            "/v1/owner/app-requests",
            headers=headers,
            json={"project_id": project_id, "app_name": "Corner Shop"},
        )
        listed = await client.get("/v1/owner/app-requests", headers=headers)
        other_owner = await client.get("/v1/owner/app-requests", headers=owner_headers(owner_id + 1))

    assert created.status_code == 201
    data = created.json()["data"]
    assert data["status"] == "PENDING"
    assert data["slug"] == "corner-shop"
    assert data["owner_id"] == owner_id
    assert duplicate.json()["data"]["slug"] == "corner-shop-2"
    assert len(listed.json()["data"]) == 2
    assert other_owner.json()["data"] == []


@pytest.mark.asyncio
async def test_create_request_validation() -> None:
    owner_id = await create_owner()
    project_id = await create_project()
    app = create_app()
    async with _client(app) as client:
        missing_name = await client.post(
            "/v1/owner/app-requests", headers=owner_headers(owner_id), json={"projectId": project_id}
        )
        unknown_project = await client.post(
            "/v1/owner/app-requests",
            headers=owner_headers(owner_id),
            json={"projectId": 404404, "appName": "Shop"},
        )

    assert missing_name.status_code == 422
    assert missing_name.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"
    assert unknown_project.status_code == 400
    assert unknown_project.json()["error"]["code"] == "INVALID_BUILD_REQUEST"


@pytest.mark.asyncio
async def test_auto_approve_provisions_and_dispatches() -> None:
    owner_id = await create_owner()
    project_id = await create_project()
    app = create_app()
    async with _client(app) as client:
        response = await client.post(
            "/v1/owner/app-requests/auto",
            headers=owner_headers(owner_id),
            json={
                "projectId": project_id,
                "appName": "Kiosk",
                "palette": {"primary": "#112233", "menuType": "drawer"},
                "navJson": '{"tabs":["home"]}',
            },
        )
        broken = await client.post(
            "/v1/owner/app-requests/auto",
            headers=owner_headers(owner_id),
            json={"projectId": project_id, "appName": "Broken", "homeJson": "{nope"},
        )
        my_apps = await client.get("/v1/owner/my-apps", headers=owner_headers(owner_id))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["request"]["status"] == "APPROVED"
    assert data["link"]["slug"] == "kiosk"
    assert data["link"]["android_version_code"] == 1
    assert data["job"]["status"] == BUILD_STATUS_QUEUED
    assert data["job"]["platform"] == "ANDROID"
    trigger = recorded_triggers()[0]
    assert trigger.config["NAV_JSON"] == '{"tabs":["home"]}'
    assert "#112233" in trigger.config["THEME_JSON"]

    assert broken.status_code == 400
    assert [item["slug"] for item in my_apps.json()["data"]] == ["kiosk"]


@pytest.mark.asyncio
async def test_build_jobs_are_scoped_to_owner() -> None:
    seeded = await seed_app()
    await create_job(seeded.link_id, ci_build_id="a-1", status=BUILD_STATUS_SUCCEEDED)
    await create_job(seeded.link_id, ci_build_id="a-2")
    app = create_app()
    async with _client(app) as client:
        own = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs", headers=owner_headers(seeded.owner_id)
        )
        limited = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs?limit=1", headers=owner_headers(seeded.owner_id)
        )
        foreign = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs", headers=owner_headers(seeded.owner_id + 50)
        )
        too_many = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs?limit=500", headers=owner_headers(seeded.owner_id)
        )

    assert [job["ci_build_id"] for job in own.json()["data"]] == ["a-2", "a-1"]
    assert len(limited.json()["data"]) == 1
    assert foreign.status_code == 404
    assert foreign.json()["error"]["code"] == "APP_LINK_NOT_FOUND"
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_latest_build_job() -> None:
    seeded = await seed_app()
    headers = owner_headers(seeded.owner_id)
    app = create_app()
    async with _client(app) as client:
        empty = await client.get(f"/v1/owner/apps/{seeded.link_id}/build-jobs/latest", headers=headers)
        await create_job(seeded.link_id, ci_build_id="android-1")
        await create_job(seeded.link_id, platform="IOS", ci_build_id="ios-1")
        latest_any = await client.get(f"/v1/owner/apps/{seeded.link_id}/build-jobs/latest", headers=headers)
        latest_android = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs/latest?platform=android", headers=headers
        )
        bad_platform = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-jobs/latest?platform=windows", headers=headers
        )

    assert empty.status_code == 200
    assert empty.json()["data"] == {"message": "No build jobs found"}
    assert latest_any.json()["data"]["ci_build_id"] == "ios-1"
    assert latest_android.json()["data"]["ci_build_id"] == "android-1"
    assert bad_platform.status_code == 400
    assert "Invalid platform" in bad_platform.json()["error"]["message"]


@pytest.mark.asyncio
async def test_build_status_summary() -> None:
    seeded = await seed_app()
    await create_job(seeded.link_id, ci_build_id="android-9")
    app = create_app()
    async with _client(app) as client:
        response = await client.get(
            f"/v1/owner/apps/{seeded.link_id}/build-status", headers=owner_headers(seeded.owner_id)
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["link_id"] == seeded.link_id
    assert data["android"]["ci_build_id"] == "android-9"
    assert data["ios"] is None
    assert data["apk_url"] is None


@pytest.mark.asyncio
async def test_owner_rebuild() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        accepted = await client.post(
            f"/v1/owner/apps/{seeded.link_id}/rebuild", headers=owner_headers(seeded.owner_id)
        )
        foreign = await client.post(
            f"/v1/owner/apps/{seeded.link_id}/rebuild", headers=owner_headers(seeded.owner_id + 7)
        )
        missing = await client.post("/v1/owner/apps/404404/rebuild", headers=owner_headers(seeded.owner_id))

    assert accepted.status_code == 202
    assert accepted.json()["data"]["status"] == BUILD_STATUS_QUEUED
    assert foreign.status_code == 403
    assert foreign.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert missing.status_code == 404
    assert len(recorded_triggers()) == 1
