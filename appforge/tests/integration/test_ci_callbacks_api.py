from __future__ import annotations

import base64
import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from appforge.apps.api.deps import get_manifest_poller
from appforge.apps.api.main import create_app
from appforge.core.config import get_settings
from appforge.domain.builds import (
    BUILD_STATUS_FAILED,
    BUILD_STATUS_RUNNING,
    BUILD_STATUS_SUCCEEDED,
)
from appforge.domain.models import AuditEvent
from appforge.persistence.db import SessionLocal
from appforge.services.builds.manifest import ManifestPoller
from appforge.tests.utils.auth import CI_TEST_TOKEN, ci_headers
from appforge.tests.utils.seed import create_job, create_runtime_config, fetch_job, fetch_link, seed_app


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_ci_routes_require_shared_secret() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        missing = await client.get(f"/v1/ci/build-config/{seeded.link_id}")
        wrong = await client.get(f"/v1/ci/build-config/{seeded.link_id}", headers=ci_headers("nope"))
        bearer = await client.get(
            f"/v1/ci/build-config/{seeded.link_id}",
            headers={"Authorization": f"Bearer {CI_TEST_TOKEN}"},
        )

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "CI_UNAUTHORIZED"
    assert missing.json()["error"]["message"] == "Missing or invalid CI token"
    assert wrong.status_code == 401
    assert bearer.status_code == 200

    async with SessionLocal() as session:
        failures = (
            await session.execute(select(AuditEvent).where(AuditEvent.event_type == "auth.ci.failure"))
        ).scalars().all()
    assert len(failures) == 2
    assert all(event.actor_type == "ci" for event in failures)


@pytest.mark.asyncio
async def test_dev_bypass_only_applies_in_dev_environments(monkeypatch) -> None:
    seeded = await seed_app()
    monkeypatch.setenv("CI_AUTH_DEV_BYPASS", "true")
    get_settings.cache_clear()
    app = create_app()
    async with _client(app) as client:
        blocked = await client.get(f"/v1/ci/build-config/{seeded.link_id}")
        monkeypatch.setenv("ENVIRONMENT", "dev")
        get_settings.cache_clear()
        allowed = await client.get(f"/v1/ci/build-config/{seeded.link_id}")

    assert blocked.status_code == 401
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_build_config_snapshot() -> None:
    seeded = await seed_app(with_currency=True)
    nav = '{"tabs":["home"]}'
    await create_runtime_config(seeded.link_id, nav_json=nav, branding_json='{"menuType":"drawer"}')
    app = create_app()
    async with _client(app) as client:
        response = await client.get(f"/v1/ci/build-config/{seeded.link_id}", headers=ci_headers())
        missing = await client.get("/v1/ci/build-config/404404", headers=ci_headers())

    assert response.status_code == 200
    body = response.json()
    assert set(body["meta"]) == {"request_id", "api_version"}
    data = body["data"]
    assert data["link_id"] == seeded.link_id
    assert data["slug"] == "shop"
    assert data["app_type"] == "ECOMMERCE"
    assert data["currency_code"] == "USD"
    assert data["menu_type"] == "hamburger"
    assert data["nav_json"] == nav
    assert base64.b64decode(data["nav_json_b64"]).decode("utf-8") == nav
    assert json.loads(data["home_json"]) == {}
    assert data["android_package_name"] == f"com.appforge.app{seeded.link_id}"
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "APP_LINK_NOT_FOUND"


@pytest.mark.asyncio
async def test_mobile_runtime_config() -> None:
    seeded = await seed_app()
    app = create_app()
    async with _client(app) as client:
        response = await client.get(
            f"/v1/ci/config/owner-projects/{seeded.owner_id}/{seeded.project_id}/apps/SHOP",
            headers=ci_headers(),
        )
        missing = await client.get(
            f"/v1/ci/config/owner-projects/{seeded.owner_id}/{seeded.project_id}/apps/nope",
            headers=ci_headers(),
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["link_id"] == seeded.link_id
    assert data["api_base_url"] == "http://localhost:8080"
    assert data["ws_path"] == "/api/ws"
    assert data["owner_attach_mode"] == "header"
    assert data["app_role"] == "both"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_running_then_failed_then_late_success() -> None:
    seeded = await seed_app()
    job_id = await create_job(seeded.link_id, ci_build_id="run-1")
    app = create_app()
    async with _client(app) as client:
        running = await client.post("/v1/ci/build-jobs/run-1/running", headers=ci_headers())
        repeat = await client.post("/v1/ci/build-jobs/run-1/running", headers=ci_headers())
        failed = await client.post(
            "/v1/ci/build-jobs/run-1/failed", headers=ci_headers(), json={"error": "gradle exploded"}
        )
        late = await client.post(
            "/v1/ci/build-jobs/run-1/succeeded", headers=ci_headers(), json={"apkUrl": "https://cdn/late.apk"}
        )

    assert running.status_code == 200
    assert running.json()["data"]["status"] == "applied"
    assert running.json()["data"]["job"]["status"] == BUILD_STATUS_RUNNING
    assert running.json()["meta"]["ci_build_id"] == "run-1"
    assert repeat.json()["data"]["status"] == "noop"
    assert failed.json()["data"]["status"] == "applied"
    assert late.status_code == 200
    assert late.json()["data"]["status"] == "noop"

    job = await fetch_job(job_id)
    assert job.status == BUILD_STATUS_FAILED
    assert job.error == "gradle exploded"
    assert job.apk_url is None
    assert (await fetch_link(seeded.link_id)).apk_url is None


@pytest.mark.asyncio
async def test_failed_without_body_uses_default_message() -> None:
    seeded = await seed_app()
    job_id = await create_job(seeded.link_id, ci_build_id="run-2")
    app = create_app()
    async with _client(app) as client:
        response = await client.post("/v1/ci/build-jobs/run-2/failed", headers=ci_headers())

    assert response.status_code == 200
    assert (await fetch_job(job_id)).error == "CI build failed"


@pytest.mark.asyncio
async def test_success_writes_job_and_link_artifacts() -> None:
    seeded = await seed_app()
    job_id = await create_job(seeded.link_id, ci_build_id="run-3")
    app = create_app()
    async with _client(app) as client:
        response = await client.post(
            "/v1/ci/build-jobs/run-3/succeeded",
            headers=ci_headers(),
            json={"apkUrl": "https://cdn/3.apk", "aabUrl": "https://cdn/3.aab", "ipaUrl": "https://cdn/3.ipa"},
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "applied"
    assert data["job"]["status"] == BUILD_STATUS_SUCCEEDED
    job = await fetch_job(job_id)
    assert job.apk_url == "https://cdn/3.apk"
    assert job.bundle_url == "https://cdn/3.aab"
    # Android jobs never carry an iOS artifact.
    assert job.ipa_url is None
    link = await fetch_link(seeded.link_id)
    assert link.apk_url == "https://cdn/3.apk"
    assert link.ipa_url is None


@pytest.mark.asyncio
async def test_unknown_build_id(monkeypatch) -> None:
    app = create_app()
    async with _client(app) as client:
        rejected = await client.post("/v1/ci/build-jobs/ghost/running", headers=ci_headers())
        monkeypatch.setenv("CI_CALLBACK_ACCEPT_UNKNOWN", "true")
        get_settings.cache_clear()
        ignored = await client.post("/v1/ci/build-jobs/ghost/succeeded", headers=ci_headers())

    assert rejected.status_code == 404
    assert rejected.json()["error"]["code"] == "BUILD_JOB_NOT_FOUND"
    assert ignored.status_code == 200
    assert ignored.json()["data"] == {"status": "ignored", "ci_build_id": "ghost", "job": None}


@pytest.mark.asyncio
async def test_put_apk_url() -> None:
    seeded = await seed_app()
    path = f"/v1/ci/owner-projects/{seeded.owner_id}/{seeded.project_id}/apps/SHOP/apk-url"
    app = create_app()
    async with _client(app) as client:
        blank = await client.put(path, headers=ci_headers(), json={"apkUrl": "   "})
        ok = await client.put(path, headers=ci_headers(), json={"apkUrl": " https://cdn/manual.apk "})
        unknown = await client.put(
            f"/v1/ci/owner-projects/{seeded.owner_id}/{seeded.project_id}/apps/ghost/apk-url",
            headers=ci_headers(),
            json={"apk_url": "https://cdn/x.apk"},
        )

    assert blank.status_code == 400
    assert blank.json()["error"]["code"] == "INVALID_BUILD_REQUEST"
    assert ok.status_code == 200
    assert ok.json()["data"]["apk_url"] == "https://cdn/manual.apk"
    assert unknown.status_code == 404
    assert (await fetch_link(seeded.link_id)).apk_url == "https://cdn/manual.apk"


@pytest.mark.asyncio
async def test_manifest_pull_endpoint() -> None:
    seeded = await seed_app()
    manifest_path = f"/appforge/mobile-builds/main/builds/{seeded.owner_id}/{seeded.project_id}/shop/latest.json"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == manifest_path:
            return httpx.Response(200, json={"apkUrl": "https://cdn/pulled.apk"})
        return httpx.Response(500)

    app = create_app()
    app.dependency_overrides[get_manifest_poller] = lambda: ManifestPoller(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    async with _client(app) as client:
        pulled = await client.post(
            f"/v1/ci/pull/{seeded.owner_id}/{seeded.project_id}/shop", headers=ci_headers()
        )
        missing = await client.post(
            f"/v1/ci/pull/{seeded.owner_id}/{seeded.project_id}/ghost", headers=ci_headers()
        )

    assert pulled.status_code == 200
    data = pulled.json()["data"]
    assert data["updated"] is True
    assert data["reason"] == "updated"
    assert data["apk_url"] == "https://cdn/pulled.apk"
    assert data["manifest_url"].endswith(manifest_path)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_manifest_upstream_error_maps_to_bad_gateway() -> None:
    seeded = await seed_app()
    app = create_app()
    app.dependency_overrides[get_manifest_poller] = lambda: ManifestPoller(
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    )
    async with _client(app) as client:
        response = await client.post(
            f"/v1/ci/pull/{seeded.owner_id}/{seeded.project_id}/shop", headers=ci_headers()
        )

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "MANIFEST_UNAVAILABLE"
