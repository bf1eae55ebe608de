from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from appforge.core.config import get_settings
from appforge.persistence.db import get_session
from appforge.providers.ci.base import CiProvider
from appforge.services.audit import get_request_context, record_event
from appforge.services.auth.ci_tokens import extract_ci_token, verify_ci_token
from appforge.services.auth.tokens import ROLE_OWNER, ROLE_SUPER_ADMIN, decode_access_token, normalize_role
from appforge.services.builds.manifest import ManifestPoller


_DEV_ENVIRONMENTS = {"local", "dev"}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated human caller; owner_id scopes every owner endpoint.
    owner_id: int
    role: str
    auth_method: str = "jwt"

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _ci_auth_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "CI_UNAUTHORIZED", "message": "Missing or invalid CI token"},
    )


def _extract_error_code(exc: HTTPException) -> str | None:
    detail = exc.detail
    if isinstance(detail, dict):
        return detail.get("code")
    return None


def _request_metadata(request: Request) -> dict[str, str]:
    # Include minimal request context for traceability without sensitive headers.
    return {"path": request.url.path, "method": request.method}


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _principal_from_dev_headers(request: Request) -> Principal:
    # Allow X-Owner-Id/X-Role headers only when explicitly enabled for local dev.
    raw_owner = request.headers.get("X-Owner-Id")
    if not raw_owner:
        raise _auth_error("X-Owner-Id header is required in dev bypass mode")
    try:
        owner_id = int(raw_owner)
    except ValueError as exc:
        raise _auth_error("X-Owner-Id must be an integer") from exc
    try:
        role = normalize_role(request.headers.get("X-Role", ROLE_OWNER))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Principal(owner_id=owner_id, role=role, auth_method="dev_bypass")


async def _audit_auth_failure(request: Request, db: AsyncSession, exc: HTTPException) -> None:
    request_ctx = get_request_context(request)
    await record_event(
        session=db,
        owner_id=None,
        actor_type="anonymous",
        actor_id=None,
        actor_role=None,
        event_type="auth.access.failure",
        outcome="failure",
        resource_type="auth",
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata=_request_metadata(request),
        error_code=_extract_error_code(exc),
        commit=True,
        best_effort=True,
    )


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    try:
        bearer_token = _parse_bearer_token(request.headers.get(settings.auth_header))
        if not settings.auth_enabled or not bearer_token:
            if settings.auth_dev_bypass:
                return _principal_from_dev_headers(request)
            if not settings.auth_enabled:
                raise _auth_error("Authentication disabled; set AUTH_DEV_BYPASS=true for dev access")
            raise _auth_error("Missing bearer token")
        try:
            claims = decode_access_token(bearer_token)
        except ValueError as exc:
            raise _auth_error("Invalid or expired token") from exc
    except HTTPException as exc:
        await _audit_auth_failure(request, db, exc)
        raise
    return Principal(owner_id=claims.owner_id, role=claims.role, auth_method="jwt")


async def require_super_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    if principal.is_super_admin:
        return principal
    # Log RBAC denials before raising a 403 response.
    request_ctx = get_request_context(request)
    await record_event(
        session=db,
        owner_id=principal.owner_id,
        actor_type="user",
        actor_id=principal.owner_id,
        actor_role=principal.role,
        event_type="rbac.forbidden",
        outcome="failure",
        resource_type="rbac",
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata={**_request_metadata(request), "required_role": ROLE_SUPER_ADMIN},
        error_code="AUTH_FORBIDDEN",
        commit=True,
        best_effort=True,
    )
    raise _forbidden_error("Super admin role required")


async def require_ci_caller(request: Request) -> None:
    """Gate machine endpoints on the shared CI secret before any handler runs."""
    settings = get_settings()
    if settings.ci_auth_dev_bypass and settings.environment.lower() in _DEV_ENVIRONMENTS:
        return
    presented = extract_ci_token(
        request.headers.get(settings.ci_auth_header),
        request.headers.get("Authorization"),
    )
    if verify_ci_token(presented, settings.ci_callback_token):
        return
    exc = _ci_auth_error()
    request_ctx = get_request_context(request)
    await record_event(
        owner_id=None,
        actor_type="ci",
        actor_id=None,
        actor_role=None,
        event_type="auth.ci.failure",
        outcome="failure",
        resource_type="auth",
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata={**_request_metadata(request), "token_present": presented is not None},
        error_code=_extract_error_code(exc),
    )
    raise exc


def get_build_provider() -> CiProvider | None:
    # None lets the dispatcher resolve the configured provider per call; tests override this.
    return None


def get_manifest_poller() -> ManifestPoller:
    return ManifestPoller()
