from __future__ import annotations

from appforge.services.auth.ci_tokens import extract_ci_token, verify_ci_token


def test_extract_prefers_dedicated_header() -> None:
    assert extract_ci_token("header-secret", "Bearer bearer-secret") == "header-secret"
    assert extract_ci_token("  padded  ", None) == "padded"


def test_extract_falls_back_to_bearer() -> None:
    assert extract_ci_token(None, "Bearer bearer-secret") == "bearer-secret"
    assert extract_ci_token("   ", "bearer lower-case") == "lower-case"


def test_extract_rejects_blank_and_malformed_values() -> None:
    assert extract_ci_token(None, None) is None
    assert extract_ci_token("", "") is None
    assert extract_ci_token(None, "Basic dXNlcjpwYXNz") is None
    assert extract_ci_token(None, "Bearer") is None
    assert extract_ci_token(None, "Bearer a b") is None


def test_verify_requires_configured_matching_secret() -> None:
    assert verify_ci_token("s3cret", "s3cret") is True
    assert verify_ci_token("s3cret", " s3cret ") is True
    assert verify_ci_token(" s3cret ", "s3cret") is False
    assert verify_ci_token("wrong", "s3cret") is False
    assert verify_ci_token(None, "s3cret") is False
    # An unconfigured secret never authenticates, not even an empty presentation.
    assert verify_ci_token("s3cret", None) is False
    assert verify_ci_token("", "") is False
    assert verify_ci_token("anything", "   ") is False
