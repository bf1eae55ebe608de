from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, model_serializer


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION
    # Only set on CI callback answers, so workflow logs can be matched to ledger rows.
    ci_build_id: str | None = None

    @model_serializer(mode="wrap")
    def _omit_missing_build_id(self, handler) -> dict[str, Any]:
        data = handler(self)
        if data.get("ci_build_id") is None:
            data.pop("ci_build_id", None)
        return data


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def bind_request_id(request: Request) -> str:
    """Adopt the caller's X-Request-Id (CI runs send their run id) or mint one."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
    return request_id


def is_versioned_request(request: Request) -> bool:
    return request.url.path.startswith(f"/{API_VERSION}")


def _meta(request: Request, *, ci_build_id: str | None = None) -> dict[str, Any]:
    return ResponseMeta(request_id=bind_request_id(request), ci_build_id=ci_build_id).model_dump()


def success_response(*, request: Request, data: Any, ci_build_id: str | None = None) -> dict[str, Any]:
    if not is_versioned_request(request):
        return data
    return {"data": data, "meta": _meta(request, ci_build_id=ci_build_id)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
