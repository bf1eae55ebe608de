from __future__ import annotations

from typing import Any

from appforge.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, **details: Any) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details or None),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", "INVALID_BUILD_REQUEST", "Invalid platform: X. Use ANDROID or IOS"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid bearer token"),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "App link does not belong to the caller"),
    404: _response("Not found", "APP_LINK_NOT_FOUND", "App link not found: 42"),
    409: _response("Conflict", "BUILD_ALREADY_ACTIVE", "A ANDROID build is already QUEUED for app link 42"),
    422: _response("Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    502: _response("Upstream unavailable", "MANIFEST_UNAVAILABLE", "Manifest fetch failed: HTTP 500"),
}

CI_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    401: _response("Unauthorized", "CI_UNAUTHORIZED", "Missing or invalid CI token"),
}
