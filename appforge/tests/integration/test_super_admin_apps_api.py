from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from appforge.apps.api.deps import get_build_provider
from appforge.apps.api.main import create_app
from appforge.core.config import get_settings
from appforge.core.errors import CiDispatchError
from appforge.domain.builds import BUILD_STATUS_FAILED, BUILD_STATUS_QUEUED, BUILD_STATUS_SUCCEEDED
from appforge.domain.models import AuditEvent, BuildJob
from appforge.persistence.db import SessionLocal
from appforge.providers.ci.fake import FakeCiProvider, recorded_triggers
from appforge.tests.utils.auth import owner_headers, super_admin_headers
from appforge.tests.utils.seed import (
    create_job,
    create_owner,
    create_project,
    create_runtime_config,
    fetch_job,
    fetch_link,
    fetch_request,
    seed_app,
)


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _job_count() -> int:
    async with SessionLocal() as session:
        return (await session.execute(select(func.count()).select_from(BuildJob))).scalar_one()


@pytest.mark.asyncio
async def test_owner_token_is_forbidden() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        response = await client.get("/v1/super-admin/apps", headers=owner_headers(seeded.owner_id))

    assert response.status_code == 403
    assert response.json()["error"] == {"code": "AUTH_FORBIDDEN", "message": "Super admin role required"}
    async with SessionLocal() as session:
        event = (
            await session.execute(select(AuditEvent).where(AuditEvent.event_type == "rbac.forbidden"))
        ).scalar_one()
    assert event.actor_id == str(seeded.owner_id)
    assert event.metadata_json["required_role"] == "SUPER_ADMIN"


@pytest.mark.asyncio
async def test_list_and_detail() -> None:
    seeded = await seed_app()
    await create_runtime_config(seeded.link_id, nav_json='{"tabs":[]}')
    await create_job(seeded.link_id, ci_build_id="android-1", status=BUILD_STATUS_SUCCEEDED)
    await create_job(seeded.link_id, platform="IOS", ci_build_id="ios-1")
    app = create_app()
    async with _client(app) as client:
        listing = await client.get("/v1/super-admin/apps", headers=super_admin_headers())
        details = await client.get(f"/v1/super-admin/apps/{seeded.link_id}", headers=super_admin_headers())
        missing = await client.get("/v1/super-admin/apps/404404", headers=super_admin_headers())

    rows = listing.json()["data"]
    assert len(rows) == 1
    assert rows[0]["link_id"] == seeded.link_id
    assert rows[0]["owner_email"] == "owner@example.com"
    assert rows[0]["project_name"] == "Corner Shop"

    data = details.json()["data"]
    assert data["app"]["slug"] == "shop"
    assert data["runtime_config"]["nav_json"] == '{"tabs":[]}'
    assert data["latest_android"]["ci_build_id"] == "android-1"
    assert data["latest_ios"]["ci_build_id"] == "ios-1"
    assert len(data["recent_jobs"]) == 2
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "APP_LINK_NOT_FOUND"


@pytest.mark.asyncio
async def test_rebuild_bundle_bumps_and_dispatches() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        first = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle", headers=super_admin_headers()
        )
        second = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle",
            headers=super_admin_headers(),
            json={"bumpVersion": False, "apiBaseUrlOverride": "https://api.shop.example"},
        )

    assert first.status_code == 202
    first_data = first.json()["data"]
    assert first_data["link"]["android_version_code"] == 1
    assert first_data["jobs"]["ANDROID"]["status"] == BUILD_STATUS_QUEUED
    assert first_data["jobs"]["ANDROID"]["version_name"] == "1.0.0"

    second_data = second.json()["data"]
    assert second_data["link"]["android_version_code"] == 1
    # The new dispatch supersedes the still-queued first job.
    assert (await fetch_job(first_data["jobs"]["ANDROID"]["id"])).status == BUILD_STATUS_FAILED
    assert recorded_triggers()[-1].config["API_BASE_URL"] == "https://api.shop.example"


@pytest.mark.asyncio
async def test_rebuild_ios_and_both() -> None:
    seeded = await seed_app(with_identifiers=False)
    app = create_app()
    async with _client(app) as client:
        ios = await client.post(f"/v1/super-admin/apps/{seeded.link_id}/rebuild-ios", headers=super_admin_headers())
        both = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-both",
            headers=super_admin_headers(),
            json={"bumpIos": False},
        )

    assert ios.status_code == 202
    ios_link = ios.json()["data"]["link"]
    assert ios_link["ios_bundle_id"] == f"com.appforge.app{seeded.link_id}.app"
    assert ios_link["ios_build_number"] == 1
    assert list(ios.json()["data"]["jobs"]) == ["IOS"]

    assert both.status_code == 202
    both_data = both.json()["data"]
    assert set(both_data["jobs"]) == {"ANDROID", "IOS"}
    assert both_data["link"]["android_version_code"] == 1
    assert both_data["link"]["ios_build_number"] == 1
    assert [trigger.platform for trigger in recorded_triggers()] == ["IOS", "ANDROID", "IOS"]


@pytest.mark.asyncio
async def test_rebuild_rejects_bad_input_without_side_effects() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        invalid = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle",
            headers=super_admin_headers(),
            json={"navJson": "{not json"},
        )
        unknown = await client.post("/v1/super-admin/apps/404404/rebuild-both", headers=super_admin_headers())

    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "INVALID_BUILD_REQUEST"
    assert unknown.status_code == 404
    assert await _job_count() == 0
    assert (await fetch_link(seeded.link_id)).android_version_code is None


@pytest.mark.asyncio
async def test_reject_policy_returns_conflict(monkeypatch) -> None:
    seeded = await seed_app()
    await create_job(seeded.link_id, ci_build_id="busy")
    monkeypatch.setenv("BUILD_ACTIVE_JOB_POLICY", "reject")
    get_settings.cache_clear()
    app = create_app()
    async with _client(app) as client:
        response = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle",
            headers=super_admin_headers(),
            json={"bumpVersion": False},
        )
        bumped = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle",
            headers=super_admin_headers(),
            json={"bumpVersion": True},
        )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "BUILD_ALREADY_ACTIVE"
    assert bumped.status_code == 409
    assert await _job_count() == 1
    assert (await fetch_link(seeded.link_id)).android_version_code is None


@pytest.mark.asyncio
async def test_dispatch_failure_still_accepted() -> None:
    seeded = await seed_app()
    app = create_app()
    app.dependency_overrides[get_build_provider] = lambda: FakeCiProvider(fail_with=CiDispatchError("offline"))
    async with _client(app) as client:
        response = await client.post(
            f"/v1/super-admin/apps/{seeded.link_id}/rebuild-bundle", headers=super_admin_headers()
        )

    assert response.status_code == 202
    job = response.json()["data"]["jobs"]["ANDROID"]
    assert job["status"] == BUILD_STATUS_FAILED
    assert job["error"].startswith("Dispatch failed")
    assert response.json()["data"]["link"]["android_version_code"] == 1


@pytest.mark.asyncio
async def test_app_request_review_flow() -> None:
    owner_id = await create_owner()
    project_id = await create_project()
    app = create_app()
    async with _client(app) as client:
        first = await client.post(
            "/v1/owner/app-requests",
            headers=owner_headers(owner_id),
            json={"projectId": project_id, "appName": "Corner Shop"},
        )
        second = await client.post(
            "/v1/owner/app-requests",
            headers=owner_headers(owner_id),
            json={"projectId": project_id, "appName": "Kiosk", "notes": "For the lobby"},
        )
        first_id = first.json()["data"]["id"]
        second_id = second.json()["data"]["id"]

        pending = await client.get("/v1/super-admin/app-requests", headers=super_admin_headers())
        approved = await client.post(
            f"/v1/super-admin/app-requests/{first_id}/approve",
            headers=super_admin_headers(),
            json={"brandingJson": '{"menuType":"drawer"}'},
        )
        again = await client.post(
            f"/v1/super-admin/app-requests/{first_id}/approve", headers=super_admin_headers()
        )
        rejected = await client.post(
            f"/v1/super-admin/app-requests/{second_id}/reject",
            headers=super_admin_headers(),
            json={"reason": "Duplicate"},
        )
        missing = await client.post("/v1/super-admin/app-requests/404404/reject", headers=super_admin_headers())
        approved_list = await client.get(
            "/v1/super-admin/app-requests?status=approved", headers=super_admin_headers()
        )

    assert [item["id"] for item in pending.json()["data"]] == [first_id, second_id]

    assert approved.status_code == 200
    data = approved.json()["data"]
    assert data["request"]["status"] == "APPROVED"
    assert data["link"]["slug"] == "corner-shop"
    assert data["link"]["license_id"].startswith("LIC-")
    assert data["job"]["status"] == BUILD_STATUS_QUEUED
    assert recorded_triggers()[0].config["MENU_TYPE"] == "hamburger"

    assert again.status_code == 409
    assert again.json()["error"]["code"] == "APP_REQUEST_NOT_PENDING"
    assert rejected.status_code == 200
    assert rejected.json()["data"]["status"] == "REJECTED"
    assert (await fetch_request(second_id)).notes == "For the lobby\nRejected: Duplicate"
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "APP_REQUEST_NOT_FOUND"
    assert [item["id"] for item in approved_list.json()["data"]] == [first_id]


@pytest.mark.asyncio
async def test_approve_survives_dispatch_failure() -> None:
    owner_id = await create_owner()
    project_id = await create_project()
    app = create_app()
    app.dependency_overrides[get_build_provider] = lambda: FakeCiProvider(fail_with=CiDispatchError("offline"))
    async with _client(app) as client:
        created = await client.post(
            "/v1/owner/app-requests",
            headers=owner_headers(owner_id),
            json={"projectId": project_id, "appName": "Shop"},
        )
        request_id = created.json()["data"]["id"]
        approved = await client.post(
            f"/v1/super-admin/app-requests/{request_id}/approve", headers=super_admin_headers()
        )

    assert approved.status_code == 200
    assert approved.json()["data"]["job"]["status"] == BUILD_STATUS_FAILED
    assert (await fetch_request(request_id)).status == "APPROVED"
