from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from appforge.core.config import get_settings


ROLE_OWNER = "OWNER"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLES: tuple[str, ...] = (ROLE_OWNER, ROLE_SUPER_ADMIN)


@dataclass(frozen=True)
class TokenClaims:
    owner_id: int
    role: str
    expires_at: datetime | None


def normalize_role(role: str) -> str:
    # Accept "super-admin", "super_admin" and "SUPER_ADMIN" alike.
    normalized = (role or "").strip().upper().replace("-", "_")
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def issue_access_token(
    owner_id: int,
    role: str = ROLE_OWNER,
    *,
    ttl_minutes: int | None = None,
    now: datetime | None = None,
) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.auth_token_ttl_minutes
    claims: dict[str, Any] = {
        "sub": str(owner_id),
        "role": normalize_role(role),
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=ttl),
    }
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience
    if settings.auth_jwt_issuer:
        claims["iss"] = settings.auth_jwt_issuer
    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims:
    """Verify signature, expiry and optional audience/issuer; raise ValueError otherwise."""
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        raise ValueError(f"Invalid token: {exc.__class__.__name__}") from exc
    try:
        owner_id = int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid token subject") from exc
    role = normalize_role(str(claims.get("role") or ROLE_OWNER))
    exp = claims.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None
    return TokenClaims(owner_id=owner_id, role=role, expires_at=expires_at)
