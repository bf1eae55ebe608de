from __future__ import annotations


REQUEST_STATUS_PENDING = "PENDING"
REQUEST_STATUS_APPROVED = "APPROVED"
REQUEST_STATUS_REJECTED = "REJECTED"


def normalize_request_status(value: str) -> str:
    """Case-insensitive status filter; unknown values match no request."""
    return value.strip().upper()
