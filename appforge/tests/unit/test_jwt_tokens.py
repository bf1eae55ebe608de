from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from appforge.core.config import get_settings
from appforge.services.auth.tokens import (
    ROLE_OWNER,
    ROLE_SUPER_ADMIN,
    decode_access_token,
    issue_access_token,
    normalize_role,
)


def test_issued_token_round_trips_claims() -> None:
    token = issue_access_token(42, "super-admin", ttl_minutes=5)
    claims = decode_access_token(token)

    assert claims.owner_id == 42
    assert claims.role == ROLE_SUPER_ADMIN
    assert claims.expires_at is not None
    assert claims.expires_at > datetime.now(timezone.utc)


def test_normalize_role_accepts_common_spellings() -> None:
    assert normalize_role("owner") == ROLE_OWNER
    assert normalize_role(" Super_Admin ") == ROLE_SUPER_ADMIN
    with pytest.raises(ValueError, match="Unsupported role"):
        normalize_role("editor")


def test_expired_token_is_rejected() -> None:
    issued = datetime.now(timezone.utc) - timedelta(hours=2)
    token = issue_access_token(7, ttl_minutes=1, now=issued)
    with pytest.raises(ValueError):
        decode_access_token(token)


def test_foreign_signature_is_rejected() -> None:
    now = datetime.now(timezone.utc)
    forged = jwt.encode(
        {"sub": "7", "role": ROLE_SUPER_ADMIN, "exp": now + timedelta(minutes=5)},
        "not-the-configured-secret-0123456789abcdef",
        algorithm="HS256",
    )
    with pytest.raises(ValueError):
        decode_access_token(forged)


def test_non_numeric_subject_is_rejected() -> None:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "alice", "exp": now + timedelta(minutes=5)},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )
    with pytest.raises(ValueError, match="subject"):
        decode_access_token(token)


def test_missing_role_defaults_to_owner() -> None:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "11", "exp": now + timedelta(minutes=5)},
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )
    assert decode_access_token(token).role == ROLE_OWNER
