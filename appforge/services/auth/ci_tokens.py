from __future__ import annotations

import hmac


def _parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def extract_ci_token(x_auth_token: str | None, authorization: str | None) -> str | None:
    """Return the presented CI secret, preferring the dedicated header."""
    if x_auth_token is not None and x_auth_token.strip():
        return x_auth_token.strip()
    bearer = _parse_bearer(authorization)
    if bearer is not None and bearer.strip():
        return bearer.strip()
    return None


def verify_ci_token(presented: str | None, expected: str | None) -> bool:
    # An unconfigured secret never authenticates anyone.
    if not presented or not expected or not expected.strip():
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.strip().encode("utf-8"))
