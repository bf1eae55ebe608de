from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from appforge.apps.api.response import error_response, is_versioned_request
from appforge.core.errors import (
    ActiveBuildConflictError,
    AppForgeError,
    AppLinkNotFoundError,
    AppRequestNotFoundError,
    AppRequestStateError,
    BuildJobNotFoundError,
    ForbiddenError,
    InvalidBuildRequestError,
    ManifestFetchError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific classes first; lookup walks the MRO of the raised error.
_DOMAIN_ERRORS: dict[type[AppForgeError], tuple[int, str]] = {
    AppLinkNotFoundError: (404, "APP_LINK_NOT_FOUND"),
    BuildJobNotFoundError: (404, "BUILD_JOB_NOT_FOUND"),
    AppRequestNotFoundError: (404, "APP_REQUEST_NOT_FOUND"),
    InvalidBuildRequestError: (400, "INVALID_BUILD_REQUEST"),
    ForbiddenError: (403, "AUTH_FORBIDDEN"),
    ActiveBuildConflictError: (409, "BUILD_ALREADY_ACTIVE"),
    AppRequestStateError: (409, "APP_REQUEST_NOT_PENDING"),
    ManifestFetchError: (502, "MANIFEST_UNAVAILABLE"),
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_status(exc: AppForgeError) -> tuple[int, str] | None:
    for cls in type(exc).__mro__:
        mapped = _DOMAIN_ERRORS.get(cls)  # type: ignore[arg-type]
        if mapped is not None:
            return mapped
    return None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 for unknown routes) share the envelope.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(request: Request, exc: AppForgeError) -> JSONResponse:
    mapped = domain_status(exc)
    if mapped is None:
        logger.warning("domain_error_unmapped error=%s path=%s", exc.__class__.__name__, request.url.path)
        payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
        return JSONResponse(content=payload, status_code=500)
    status_code, code = mapped
    if status_code >= 500:
        logger.warning(
            "domain_error_upstream error=%s code=%s path=%s", exc.__class__.__name__, code, request.url.path
        )
    payload = error_response(request=request, code=code, message=str(exc) or code)
    return JSONResponse(content=payload, status_code=status_code)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
