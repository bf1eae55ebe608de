from __future__ import annotations

import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from appforge.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from appforge.apps.api.response import API_VERSION, REQUEST_ID_HEADER, bind_request_id
from appforge.apps.api.routes.ci import router as ci_router
from appforge.apps.api.routes.health import router as health_router
from appforge.apps.api.routes.owner_apps import router as owner_apps_router
from appforge.apps.api.routes.super_admin_apps import router as super_admin_apps_router
from appforge.core.config import get_settings
from appforge.core.errors import AppForgeError
from appforge.core.logging import configure_logging
from appforge.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    # Docs and schema are served under /v1 below; /docs only redirects there.
    app = FastAPI(title="AppForge API", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = bind_request_id(request)
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(AppForgeError)
    async def _domain_exception_handler(request: Request, exc: AppForgeError):
        return await domain_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Machine endpoints called by the CI runner with the shared secret.
    app.include_router(ci_router, prefix=f"/{API_VERSION}")
    app.include_router(owner_apps_router, prefix=f"/{API_VERSION}")
    app.include_router(super_admin_apps_router, prefix=f"/{API_VERSION}")

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="AppForge API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Owner/admin routes use bearer JWTs; CI routes use the shared secret header.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="AppForge API",
            version=API_VERSION,
            routes=app.routes,
        )
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        security_schemes["CiToken"] = {"type": "apiKey", "in": "header", "name": settings.ci_auth_header}
        for path, operations in schema.get("paths", {}).items():
            if path == "/v1/health":
                continue
            scheme = "CiToken" if path.startswith("/v1/ci/") else "BearerAuth"
            for operation in operations.values():
                operation.setdefault("security", [{scheme: []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
