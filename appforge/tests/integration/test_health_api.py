from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from appforge.apps.api.main import create_app
from appforge.services.telemetry import record_external_call


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_reports_liveness_and_integrations() -> None:
    record_external_call(integration="ci.github_dispatch", latency_ms=120.0, success=True)
    record_external_call(integration="ci.github_dispatch", latency_ms=480.0, success=False)
    app = create_app()
    async with _client(app) as client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-health-1"})

    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-health-1"
    body = response.json()
    assert body["meta"] == {"request_id": "req-health-1", "api_version": "v1"}
    data = body["data"]
    assert data["status"] == "ok"
    assert data["service"] == "appforge"
    assert data["database"]["dialect"] == "sqlite"
    dispatch = data["integrations"]["ci.github_dispatch"]
    assert dispatch["max"] == 480.0
    assert dispatch["failures"] == 1
    assert data["ci_dispatch_breaker"] == "closed"


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope() -> None:
    app = create_app()
    async with _client(app) as client:
        response = await client.get("/v1/nope")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_openapi_declares_auth_schemes() -> None:
    app = create_app()
    async with _client(app) as client:
        response = await client.get("/v1/openapi.json")
        docs = await client.get("/docs")
        redoc = await client.get("/redoc")
        root_schema = await client.get("/openapi.json")

    schema = response.json()
    schemes = schema["components"]["securitySchemes"]
    assert schemes["CiToken"] == {"type": "apiKey", "in": "header", "name": "X-Auth-Token"}
    assert schemes["BearerAuth"]["scheme"] == "bearer"
    running = schema["paths"]["/v1/ci/build-jobs/{ci_build_id}/running"]["post"]
    assert running["security"] == [{"CiToken": []}]
    rebuild = schema["paths"]["/v1/super-admin/apps/{link_id}/rebuild-both"]["post"]
    assert rebuild["security"] == [{"BearerAuth": []}]
    assert "security" not in schema["paths"]["/v1/health"]["get"]
    assert docs.status_code in {302, 307}
    assert docs.headers["location"] == "/v1/docs"
    assert redoc.status_code == 404
    assert root_schema.status_code == 404
